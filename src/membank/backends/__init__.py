"""Key-value state store backends for the local storage adapter."""
