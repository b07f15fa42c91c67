"""Infrastructure layer: adapters for stores, providers, prompts and text"""
