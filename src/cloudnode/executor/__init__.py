"""External tool execution, backends and the idempotent action runner."""
