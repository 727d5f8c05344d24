"""
Pydantic schemas for the blog content API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class Post(BaseModel):
    # Stored posts may carry extra fields (e.g. coverImage); keep them.
    model_config = ConfigDict(extra="allow")

    title: str
    slug: str
    date: str
    content: str
    published: bool = True
    sha: Optional[str] = None


class CreatePostRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    published: bool = True


class UpdatePostRequest(BaseModel):
    slug: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    published: Optional[bool] = None
    sha: Optional[str] = None


class DeleteResponse(BaseModel):
    success: Literal[True] = True


class BooksResponse(BaseModel):
    books: list
    sha: Optional[str] = None


class UpdateBooksRequest(BaseModel):
    books: Optional[list] = None
    sha: Optional[str] = None


class ImageUploadRequest(BaseModel):
    filename: Optional[str] = None
    content: Optional[str] = None
    contentType: Optional[str] = None


class ImageUploadResponse(BaseModel):
    success: Literal[True] = True
    filename: str
    url: str
