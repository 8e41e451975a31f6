"""
Nutrition Tracker Migration

Moves the nutrition tracker's data from its legacy Parse Server backend to
Supabase while keeping every food log attached to the right user and food.

Supports:
- Users, foods and food logs, in dependency order
- Running any subset of stages, rebuilding missing ID maps from Supabase
- Re-runnable user migration (dedup by email)
- Food log photo transfer with fallback to the legacy URL
- Batched inserts with per-batch failure isolation
"""

__version__ = "0.1.0"
