"""Text and diagram generation collaborators consumed by workers."""
