"""Pure domain layer: values, DTOs, events, policy, clock and catalog protocol."""
