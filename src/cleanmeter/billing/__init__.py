"""Plans, usage metering and plan upgrades."""
