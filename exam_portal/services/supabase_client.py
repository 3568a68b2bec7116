"""Supabase client factory. Client is cached per process."""
from functools import lru_cache

from supabase import Client, create_client

from config import SUPABASE_KEY, SUPABASE_URL


def _env_client() -> Client:
    if not SUPABASE_URL or not SUPABASE_KEY:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
    return create_client(SUPABASE_URL, SUPABASE_KEY)


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    return _env_client()
