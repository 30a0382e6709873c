"""Party Planner entitlements backend."""
