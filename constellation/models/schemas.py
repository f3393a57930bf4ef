"""
Schemas for structured oracle output.

Oracle text is decoded and validated against these models before anything
downstream touches it.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RouterOutput(BaseModel):
    """Classification of one raw input."""
    model_config = ConfigDict(populate_by_name=True)

    intent: Literal['save', 'query', 'log_reading'] = 'save'
    is_original: bool = Field(alias='isOriginal')
    source_url: Optional[str] = Field(default=None, alias='sourceURL')
    source_title: Optional[str] = Field(default=None, alias='sourceTitle')
    source_author: Optional[str] = Field(default=None, alias='sourceAuthor')
    content: str = Field(min_length=1)
    tags: List[str] = Field(default_factory=list)
    media_type: Literal['text', 'audio', 'image'] = Field(alias='mediaType')

    @field_validator('intent', mode='before')
    @classmethod
    def _default_intent(cls, value):
        return value or 'save'

    @field_validator('source_url', 'source_title', 'source_author', mode='before')
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class BookQuery(BaseModel):
    query: str = Field(min_length=1)
    sort: Literal['newest', 'relevance'] = 'relevance'
    rationale: str = ''


class ArticleQueries(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dev_to_tag: str = Field(alias='devToTag')
    hn_query: str = Field(alias='hnQuery')
    arxiv_query: str = Field(alias='arxivQuery')


class AnalysisResult(BaseModel):
    """Reading lenses derived from the user's recent writing."""
    model_config = ConfigDict(populate_by_name=True)

    book_queries: List[BookQuery] = Field(alias='bookQueries', min_length=3, max_length=3)
    article_queries: ArticleQueries = Field(alias='articleQueries')


class VolumeInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    title: str
    authors: List[str] = Field(default_factory=list)
    published_date: Optional[str] = Field(default=None, alias='publishedDate')
    description: Optional[str] = None
    average_rating: Optional[float] = Field(default=None, alias='averageRating')
    info_link: Optional[str] = Field(default=None, alias='infoLink')


class Book(BaseModel):
    """A Google Books volume."""
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    id: str
    volume_info: VolumeInfo = Field(alias='volumeInfo')


class Article(BaseModel):
    title: str
    url: str
    source: Literal['Dev.to', 'HackerNews', 'arXiv']
    content: str = ''
