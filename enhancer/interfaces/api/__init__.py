"""FastAPI surface: routes, schemas, SSE streaming and error mapping"""
