"""Pure DTOs and schedule evaluation for the settlement batch.  No I/O."""
