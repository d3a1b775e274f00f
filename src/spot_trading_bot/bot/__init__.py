"""Trading bot runtime: collaborator interfaces, positions, scheduling and orchestration."""
