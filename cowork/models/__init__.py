"""Planning collaborators (rule-based and model-backed) and the plan cache."""
