"""Backend adapters implementing the core ports on top of Supabase."""
