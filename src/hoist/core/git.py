"""Contains all the integrations with Git."""
from dulwich.repo import Repo


def get_current_commit(path: str) -> str:
    """Returns the SHA commit for the current HEAD.

    Arguments:
        path: path to the repository's directory.

    Returns:
        The head's commit SHA.
    """
    repo = Repo(path)

    return repo.head().decode("utf-8")


def get_commit_time(path: str, revision: str) -> int:
    """Returns the commit timestamp of a revision.

    Arguments:
        path: path to the repository's directory.
        revision: the commit SHA.

    Returns:
        Seconds since the epoch.
    """
    repo = Repo(path)

    return repo[revision.encode("utf-8")].commit_time
