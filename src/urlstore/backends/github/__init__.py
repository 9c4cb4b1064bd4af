"""GitHub adapters. All of them share the :data:`GITHUB` provider and its token."""

from urlstore.backends.github.api import GithubAPI, GithubAPIRef
from urlstore.backends.github.base import GITHUB, Github
from urlstore.backends.github.file import GithubFile, GithubFileRef
from urlstore.backends.github.gist import GistRef, GithubGist

__all__ = [
    "GITHUB",
    "GistRef",
    "Github",
    "GithubAPI",
    "GithubAPIRef",
    "GithubFile",
    "GithubFileRef",
    "GithubGist",
]
