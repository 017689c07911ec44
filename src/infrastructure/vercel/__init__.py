from .vercel_client import VercelAPIError, VercelClient
