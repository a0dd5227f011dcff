"""Global pytest configuration."""

import os

# Keep tests offline: no provider keys, no Supabase, before any settings load
for _name in ("OPENAI_API_KEY", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_ANON_KEY"):
    os.environ.pop(_name, None)

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
