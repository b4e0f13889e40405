"""Response models documented in the OpenAPI schema."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Error payload shared by the tracking and recommendation endpoints."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [{"ok": False, "error": "Rate limit exceeded", "retryAfter": 42}]
        }
    )
    ok: bool = Field(False, description="Always false for errors")
    error: str = Field(..., description="Human readable error message")
    # Only present on 429 responses.
    retryAfter: int | None = Field(None, description="Seconds until the next allowed request")


class TrackResponse(BaseModel):
    model_config = ConfigDict(json_schema_extra={"examples": [{"ok": True, "interactionId": "17"}]})
    ok: bool = Field(True, description="Whether the interaction was stored")
    interactionId: str = Field(..., description="Identifier of the stored interaction")


class TrackViewResponse(BaseModel):
    ok: bool = Field(True, description="Whether the view was stored")


class RecommendationItem(BaseModel):
    """A recommended book with its relevance score."""

    model_config = ConfigDict(populate_by_name=True)
    id: str = Field(..., alias="_id", description="Book identifier")
    title: str = Field(..., description="Book title")
    author: str | None = Field(None, description="Book author")
    year: int | None = Field(None, description="Publication year")
    format: str | None = Field(None, description="Physical or digital format")
    status: str | None = Field(None, description="Availability status")
    categories: list[str] = Field(default_factory=list, description="Catalog categories")
    tags: list[str] = Field(default_factory=list, description="Catalog tags")
    coverImageUrl: str | None = Field(None, description="Cover image URL")
    relevanceScore: int = Field(..., description="Relevance score between 0 and 100")
    matchReasons: list[str] = Field(default_factory=list, description="Up to two reasons")


class BasedOn(BaseModel):
    viewCount: int = Field(..., description="Views in the retention window")
    searchCount: int = Field(..., description="Searches in the retention window")
    topCategories: list[str] = Field(..., description="Strongest categories, at most three")
    topTags: list[str] = Field(..., description="Strongest tags, at most three")


class RecommendationsResponse(BaseModel):
    """Payload for GET /api/student/books/recommendations."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "ok": True,
                    "recommendations": [
                        {
                            "_id": "3",
                            "title": "Structure and Interpretation of Computer Programs",
                            "author": "Harold Abelson",
                            "year": 1996,
                            "format": "hardcover",
                            "status": "available",
                            "categories": ["Computer Science"],
                            "tags": ["lisp"],
                            "coverImageUrl": None,
                            "relevanceScore": 65,
                            "matchReasons": ["Same category: Computer Science"],
                        }
                    ],
                    "basedOn": {
                        "viewCount": 4,
                        "searchCount": 1,
                        "topCategories": ["Computer Science"],
                        "topTags": ["lisp"],
                    },
                }
            ]
        }
    )
    ok: bool = Field(True, description="Whether recommendations were produced")
    recommendations: list[RecommendationItem] = Field(..., description="Ranked recommendations")
    basedOn: BasedOn = Field(..., description="Summary of the history used for ranking")
