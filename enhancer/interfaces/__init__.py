"""Interfaces layer (HTTP API)"""
