"""Domain services: image processing, vision analysis, quota, storage of explanations."""
