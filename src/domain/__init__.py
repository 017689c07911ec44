# Domain Layer
# ============
# Pure update rules with no external dependencies:
# - updates/models.py:     state, manifest and result records
# - updates/protection.py: path normalization and protected-file policy
# - updates/errors.py:     failure taxonomy shared by every layer
