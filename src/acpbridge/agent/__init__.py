"""Controller side of the bridge: the default pydantic-ai controller, models, tools and history store."""
