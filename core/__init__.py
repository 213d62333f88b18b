"""core/ -- Kernel configuration shared by every layer. Imports nothing from auth/."""
