from supabase import create_client, Client
from megaledger.config import settings

def get_supabase_client() -> Client:
    """
    Create and return a Supabase client instance.
    Uses the service role key; the bot writes its own state rows.
    """
    supabase: Client = create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_KEY or settings.SUPABASE_KEY
    )
    return supabase
