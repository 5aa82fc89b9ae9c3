"""Shared constants for ticketflow."""

import re

# Ticket identifier validation (e.g. ARCH-123)
TICKET_ID_PATTERN = re.compile(r'^[A-Z]+-[A-Za-z0-9]+$')

# Branch slug validation (e.g. branch-workflow-refresh)
SLUG_PATTERN = re.compile(r'^[a-z0-9]+(?:-[a-z0-9]+)*$')

# Repo-relative locations
CONFIG_DIRNAME = ".repo"
LIFECYCLE_CONFIG_FILENAME = "lifecycle.json"
PROJECT_CACHE_FILENAME = "projects.json"
ARCHIVE_DIRNAME = "_archive"

# Bootstrap commits
BOOTSTRAP_FILENAME = ".worktree-bootstrap.md"
BOOTSTRAP_SUBJECT_PATTERN = re.compile(r'Bootstrap worktree for .+\[skip ci\]\s*$')

# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_PRECONDITION = 10
EXIT_VALIDATION = 11

# Stages
STAGE_BRANCH = "branch"
STAGE_PR = "pr"
STAGE_REVIEW = "review"
STAGE_STATUS = "status"
STAGE_CLOSEOUT = "closeout"
STAGES = (STAGE_BRANCH, STAGE_PR, STAGE_REVIEW, STAGE_STATUS, STAGE_CLOSEOUT)
