import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# app.py reads these at import time.
_WORKSPACE = tempfile.mkdtemp(prefix="scorm_packager_tests_")
os.environ.setdefault("LOG_DIR", os.path.join(_WORKSPACE, "logs"))
os.environ.setdefault("UPLOAD_FOLDER", os.path.join(_WORKSPACE, "uploads"))
os.environ.setdefault("RATELIMIT_ENABLED", "false")
os.environ.setdefault("AUTH0_DOMAIN", "tests.example.auth0.com")
os.environ.setdefault("API_AUDIENCE", "https://scorm-packager.tests/api")

from course_tools import ProcessingContext  # noqa: E402

UNPATCHED_INDEX_LMS = """<!DOCTYPE html>
<html>
<head>
<script>
  var g_bLMSPresent = true;
  LMSLegacyInit();
  LMSLegacyCommit();
  var strContentLocation = "story_content";
</script>
</head>
<body>
<div id="app"></div>
</body>
</html>
"""

SCORM_API_JS = "window.initScormApi=function(){};\n"


def data_js(points=(10, 20, 5), trigger=True):
    scorings = '{"type":"action","id":"6Xyz"}' if trigger else '{"type":"points","id":"6Xyz"}'
    slides = ",".join('{"id":"s%d","maxpoints":%d}' % (i, p) for i, p in enumerate(points))
    return (
        "window.globalProvideData('data', '{\"scorings\":[%s],\"slides\":[%s]}');\n"
        % (scorings, slides)
    )


def build_course(
    parent,
    name="course",
    *,
    points=(10, 20, 5),
    trigger=True,
    index_lms=UNPATCHED_INDEX_LMS,
    entry_file="story.html",
    with_api=False,
):
    folder = Path(parent) / name
    (folder / "html5" / "data" / "js").mkdir(parents=True)
    (folder / "html5" / "data" / "js" / "data.js").write_text(data_js(points, trigger), encoding="utf-8")
    if index_lms is not None:
        (folder / "index_lms.html").write_text(index_lms, encoding="utf-8")
    if entry_file:
        (folder / entry_file).write_text("<html><body>story</body></html>\n", encoding="utf-8")
    if with_api:
        (folder / "scormAPI.min.js").write_text(SCORM_API_JS, encoding="utf-8")
    return folder


@pytest.fixture
def make_course(tmp_path):
    courses = tmp_path / "courses"
    courses.mkdir()

    def _make(name="course", **kwargs):
        return build_course(courses, name, **kwargs)

    return _make


@pytest.fixture
def scorm_api_file(tmp_path):
    path = tmp_path / "special_files" / "scormAPI.min.js"
    path.parent.mkdir()
    path.write_text(SCORM_API_JS, encoding="utf-8")
    return path


@pytest.fixture
def ctx():
    return ProcessingContext()


def always(answer):
    """Confirmation stub that records the questions it was asked."""
    asked = []

    def confirm(question):
        asked.append(question)
        return answer

    confirm.asked = asked
    return confirm
