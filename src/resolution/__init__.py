"""Multi-repository resolution: matching, filtering, dependencies and orchestration."""
