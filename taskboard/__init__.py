"""Project and task tracker: JSON API, dashboard and kanban board."""
