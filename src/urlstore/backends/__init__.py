"""Built-in backends, in the order the default registry tries them."""

from urlstore.backends.github import GithubAPI, GithubFile, GithubGist
from urlstore.backends.local import Local, LocalRef
from urlstore.backends.remote import Remote

BUILTIN_BACKENDS = (Local, Remote, GithubAPI, GithubGist, GithubFile)

__all__ = [
    "BUILTIN_BACKENDS",
    "GithubAPI",
    "GithubFile",
    "GithubGist",
    "Local",
    "LocalRef",
    "Remote",
]
