"""Backend integrations. Each module provides one Backend subclass."""
