"""Named workers that transform a WorkflowContext, plus the registry that resolves them."""
