"""Tests for cloning projects."""

from unittest.mock import patch

import pytest

from ghwt.core.git import GitError
from ghwt.core.repository import CloneError, clone_project, project_name_from_url

URL = "https://github.com/acme/galaxy.git"


class TestProjectNameFromUrl:
    """Tests for project_name_from_url."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/acme/galaxy.git",
            "https://github.com/acme/galaxy",
            "git@github.com:acme/galaxy.git",
        ],
    )
    def test_repository_name(self, url):
        assert project_name_from_url(url) == "galaxy"

    def test_invalid_url(self):
        with pytest.raises(CloneError, match="Invalid repository URL"):
            project_name_from_url("galaxy")


@patch("ghwt.core.repository.disable_push")
@patch("ghwt.core.repository.add_remote")
@patch("ghwt.core.repository.clone_repo")
class TestCloneProject:
    """Tests for clone_project, with git and gh mocked."""

    @patch("ghwt.core.repository.find_user_fork", return_value=None)
    def test_clone(self, mock_fork, mock_clone, mock_add_remote, mock_disable_push, config):
        result = clone_project(config, URL)

        target = config.expanded_projects_root / "repositories" / "galaxy"
        mock_clone.assert_called_once_with(URL, target)
        mock_add_remote.assert_not_called()
        mock_disable_push.assert_not_called()
        assert result.project == "galaxy"
        assert result.repository_path == target
        assert result.origin_url == URL
        assert result.upstream_url is None
        assert result.fork_detected is False

    @patch("ghwt.core.repository.find_user_fork", return_value="https://github.com/me/galaxy.git")
    def test_fork_becomes_origin(self, mock_fork, mock_clone, mock_add_remote, mock_disable_push, config):
        result = clone_project(config, URL)

        assert mock_clone.call_args[0][0] == "https://github.com/me/galaxy.git"
        mock_add_remote.assert_called_once_with(mock_clone.return_value, "upstream", URL)
        assert result.fork_detected is True
        assert result.upstream_url == URL

    @patch("ghwt.core.repository.find_user_fork")
    def test_explicit_upstream_skips_fork_check(
        self, mock_fork, mock_clone, mock_add_remote, mock_disable_push, config
    ):
        upstream = "https://github.com/other/galaxy.git"

        result = clone_project(config, URL, upstream=upstream, push=False)

        mock_fork.assert_not_called()
        mock_add_remote.assert_called_once_with(mock_clone.return_value, "upstream", upstream)
        mock_disable_push.assert_called_once_with(mock_clone.return_value)
        assert result.push_disabled is True

    @patch("ghwt.core.repository.find_user_fork")
    def test_fork_check_disabled(self, mock_fork, mock_clone, mock_add_remote, mock_disable_push, config):
        clone_project(config, URL, fork_check=False)

        mock_fork.assert_not_called()
        assert mock_clone.call_args[0][0] == URL

    def test_existing_target(self, mock_clone, mock_add_remote, mock_disable_push, config):
        (config.expanded_projects_root / "repositories" / "galaxy").mkdir(parents=True)

        with pytest.raises(CloneError, match="already exists"):
            clone_project(config, URL, fork_check=False)

        mock_clone.assert_not_called()

    def test_git_failure(self, mock_clone, mock_add_remote, mock_disable_push, config):
        mock_clone.side_effect = GitError("Failed to clone")

        with pytest.raises(CloneError, match="Failed to clone"):
            clone_project(config, URL, fork_check=False)
