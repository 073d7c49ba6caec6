"""Invoice Ninja (source system) integration."""
