"""Application layer: pipeline orchestration and use cases"""
