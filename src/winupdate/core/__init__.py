"""Core workflow: retry loop, staging, execution and orchestration"""
