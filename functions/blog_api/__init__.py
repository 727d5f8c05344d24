"""
Blog content API package.

This package provides a FastAPI application that keeps posts, the book list
and uploaded images as files inside a git repository, read and written through
a versioned document store with optimistic concurrency.
"""
