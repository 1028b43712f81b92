"""Challenge settlement engine: streak-betting challenges, levels and rewards."""
