"""Pure logic: identifiers, records, local changes, patches, config."""
