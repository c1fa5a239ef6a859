import os

from supabase import Client, create_client

# Importing config loads .env from the project root
from lookout import config  # noqa: F401


def get_supabase() -> Client:
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_KEY")
    if not url or not key:
        raise RuntimeError("Supabase credentials missing from .env")
    return create_client(url, key)
