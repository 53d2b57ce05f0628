# course_tools.py
# --- Validation, patching, scoring and zipping of exported course folders ---

import os
import re
import shutil
import logging
from enum import Enum

# --- File layout of an exported course folder ---
INDEX_LMS_FILE = 'index_lms.html'
SCORM_API_FILE = 'scormAPI.min.js'
STORY_FILE = 'story.html'
LEGACY_ENTRY_FILE = 'index.html'
DATA_JS_PATH = os.path.join('html5', 'data', 'js', 'data.js')
ZIP_OUTPUT_DIR = 'ZippedFiles'

# --- Text patterns (the exported data.js may escape its quotes) ---
COMPLETION_TRIGGER_PATTERN = re.compile(
    r'\\?"scorings\\?"\s*:\s*\[[^\]]*?\\?"type\\?"\s*:\s*\\?"action\\?"'
)
MAXPOINTS_PATTERN = re.compile(r'\\?"maxpoints\\?"\s*:\s*(\d+)')

# --- index_lms.html patch ---
ANCHOR_LINE = 'var g_bLMSPresent = true;'
INIT_HOOK = 'initScormApi();'
INIT_BLOCK = [
    'if (typeof initScormApi === "function") {',
    '    initScormApi();',
    '}',
]
LEGACY_LINE_COUNT = 2
SCRIPT_MARKER = SCORM_API_FILE
SCRIPT_LINE = f'<script src="{SCORM_API_FILE}"></script>'
BODY_CLOSE_TAG = '</body>'

logger = logging.getLogger('scorm_packager')


# --- Errors ---
class CourseProcessingError(Exception):
    """Base class for every failure that ends processing of a course folder."""
    kind = 'error'


class MissingFileError(CourseProcessingError):
    kind = 'missing-file'


class UnreadableFileError(CourseProcessingError):
    kind = 'unreadable-file'


class AnchorNotFoundError(CourseProcessingError):
    kind = 'anchor-not-found'


class EmptyFolderError(CourseProcessingError):
    kind = 'empty-folder'


class ComplianceError(CourseProcessingError):
    """Raised when a folder fails the completion-trigger or structure checks."""
    kind = 'non-compliant'

    def __init__(self, message, reasons=None):
        super().__init__(message)
        self.reasons = list(reasons or [])


class UserDeclinedError(CourseProcessingError):
    kind = 'user-declined'


class PatchOutcome(Enum):
    ALREADY_PATCHED = 'already patched'
    PATCHED = 'patched'
    FAILED = 'anchor not found'


class ComplianceResult:
    """Outcome of a structure check: a flag plus one reason per failed check."""

    def __init__(self, reasons=None):
        self.reasons = list(reasons or [])

    @property
    def compliant(self):
        return not self.reasons

    def __bool__(self):
        return self.compliant

    def __repr__(self):
        return f"ComplianceResult(compliant={self.compliant}, reasons={self.reasons!r})"


class CourseReport:
    """Per-folder result of a processing run."""

    def __init__(self, folder):
        self.folder = str(folder)
        self.name = os.path.basename(os.path.normpath(self.folder))
        self.status = 'failure'
        self.score = None
        self.archive_path = None
        self.error = None
        self.error_kind = None
        self.warnings = []

    @property
    def succeeded(self):
        return self.status == 'success'

    def fail(self, exc):
        self.status = 'failure'
        self.error = str(exc)
        self.error_kind = getattr(exc, 'kind', 'os-error')

    def to_dict(self):
        return {
            'name': self.name,
            'status': self.status,
            'score': self.score,
            'archive': os.path.basename(self.archive_path) if self.archive_path else None,
            'error': self.error,
            'error_kind': self.error_kind,
            'warnings': list(self.warnings),
        }


class ProcessingContext:
    """
    Log surface handed to every step.
    Each helper records a console-style line, echoes it when an echo
    callable is given, and forwards the plain message to the logger.
    """

    def __init__(self, log=None, echo=None):
        self.logger = log or logger
        self.echo = echo
        self.messages = []
        self.warnings = []

    def _emit(self, line, level, message):
        self.messages.append(line)
        if self.echo is not None:
            self.echo(line)
        self.logger.log(level, message)

    def step(self, message):
        self._emit(f"[STEP] {message}", logging.INFO, message)

    def action(self, message):
        self._emit(f"  -> {message}", logging.INFO, message)

    def success(self, message):
        self._emit(f"     ✅ SUCCESS: {message}", logging.INFO, message)

    def warning(self, message):
        self.warnings.append(message)
        self._emit(f"     ⚠️ WARNING: {message}", logging.WARNING, message)

    def error(self, message):
        self._emit(f"     ❌ ERROR: {message}", logging.ERROR, message)


# --- Folder Scanner ---
def list_course_folders(path, bulk=False):
    """Return the folder itself, or its immediate subfolders in bulk mode."""
    if not os.path.isdir(path):
        raise MissingFileError(f"Folder not found: {path}")
    if not bulk:
        return [str(path)]
    folders = []
    for name in sorted(os.listdir(path)):
        full_path = os.path.join(path, name)
        if name == ZIP_OUTPUT_DIR or name.startswith('.'):
            continue
        if os.path.isdir(full_path):
            folders.append(full_path)
    return folders


def _read_text(file_path):
    with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
        return f.read()


# --- Compliance Validator ---
def has_completion_trigger(folder, ctx):
    """Check data.js for a scorings record of type "action"."""
    data_path = os.path.join(folder, DATA_JS_PATH)
    ctx.action(f"Checking completion trigger in '{DATA_JS_PATH}'...")
    if not os.path.isfile(data_path):
        ctx.error(f"'{DATA_JS_PATH}' not found in {folder}")
        return False
    try:
        content = _read_text(data_path)
    except OSError as e:
        ctx.error(f"Could not read '{DATA_JS_PATH}': {e}")
        return False
    if COMPLETION_TRIGGER_PATTERN.search(content):
        ctx.success("Completion trigger found.")
        return True
    ctx.error("No completion trigger (scorings entry with type 'action') found.")
    return False


def validate_folder_structure(folder, ctx, require_script_reference=True):
    """Check the required files and the two markers inside index_lms.html."""
    ctx.step(f"Validating folder structure of '{os.path.basename(os.path.normpath(folder))}'")
    reasons = []
    for required in (INDEX_LMS_FILE, SCORM_API_FILE):
        if not os.path.isfile(os.path.join(folder, required)):
            reasons.append(f"Missing '{required}'")
    if not (os.path.isfile(os.path.join(folder, STORY_FILE))
            or os.path.isfile(os.path.join(folder, LEGACY_ENTRY_FILE))):
        reasons.append(f"Missing '{STORY_FILE}' or '{LEGACY_ENTRY_FILE}'")

    index_path = os.path.join(folder, INDEX_LMS_FILE)
    if os.path.isfile(index_path):
        try:
            content = _read_text(index_path)
        except OSError as e:
            reasons.append(f"Could not read '{INDEX_LMS_FILE}': {e}")
        else:
            if INIT_HOOK not in content:
                reasons.append(f"'{INDEX_LMS_FILE}' does not call '{INIT_HOOK}'")
            if require_script_reference and SCRIPT_MARKER not in content:
                reasons.append(f"'{INDEX_LMS_FILE}' does not reference '{SCRIPT_MARKER}'")

    result = ComplianceResult(reasons)
    if result.compliant:
        ctx.success("Folder structure is compliant.")
    else:
        for reason in reasons:
            ctx.error(reason)
    return result


def check_archive_ready(folder, ctx):
    """
    Completion trigger plus folder structure, checked right before zipping.
    The script reference is only required when index_lms.html has a
    closing body tag to place it in front of.
    """
    reasons = []
    if not has_completion_trigger(folder, ctx):
        reasons.append(f"No completion trigger in '{DATA_JS_PATH}'")
    index_path = os.path.join(folder, INDEX_LMS_FILE)
    try:
        require_script = BODY_CLOSE_TAG in _read_text(index_path)
    except OSError:
        require_script = True
    result = validate_folder_structure(folder, ctx, require_script_reference=require_script)
    return ComplianceResult(reasons + result.reasons)


# --- Score Aggregator ---
def compute_score(folder, ctx):
    """
    Sum every maxpoints field in data.js.
    Fields appearing twice are counted twice. Returns None when the file
    is missing or unreadable.
    """
    data_path = os.path.join(folder, DATA_JS_PATH)
    if not os.path.isfile(data_path):
        ctx.error(f"Cannot compute score: '{DATA_JS_PATH}' not found.")
        return None
    try:
        content = _read_text(data_path)
    except OSError as e:
        ctx.error(f"Cannot compute score: {e}")
        return None
    score = sum(int(value) for value in MAXPOINTS_PATTERN.findall(content))
    ctx.action(f"Total score: {score}")
    return score


# --- HTML Patcher ---
def _line_ending(line):
    return line[len(line.rstrip('\r\n')):]


def patch_lines(lines, newline=''):
    """
    Apply the index_lms.html insertions to a list of lines.
    Lines may keep their own endings; an inserted line takes the ending of
    the line it is placed next to, or `newline` when that line has none.
    Returns (outcome, new_lines, script_missing_tag) where the last value is
    True when the script reference was needed but no closing body tag exists.
    """
    text = '\n'.join(lines)
    needs_block = INIT_HOOK not in text
    needs_script = SCRIPT_MARKER not in text

    anchor_index = None
    if needs_block:
        for i, line in enumerate(lines):
            if line.strip() == ANCHOR_LINE:
                anchor_index = i
                break
        if anchor_index is None:
            return PatchOutcome.FAILED, list(lines), False

    result = list(lines)
    changed = False

    if needs_block:
        anchor = result[anchor_index]
        ending = _line_ending(anchor) or newline
        if not _line_ending(anchor):
            result[anchor_index] = anchor + newline
        indent = anchor[:len(anchor) - len(anchor.lstrip())]
        block = [indent + line + ending for line in INIT_BLOCK]
        start = anchor_index + 1
        end = start
        if len(result) - start >= LEGACY_LINE_COUNT:
            end = start + LEGACY_LINE_COUNT
        result[start:end] = block
        changed = True

    script_missing_tag = False
    if needs_script:
        close_index = None
        for i in range(len(result) - 1, -1, -1):
            if BODY_CLOSE_TAG in result[i]:
                close_index = i
                break
        if close_index is None:
            script_missing_tag = True
        else:
            result.insert(close_index, SCRIPT_LINE + (_line_ending(result[close_index]) or newline))
            changed = True

    outcome = PatchOutcome.PATCHED if changed else PatchOutcome.ALREADY_PATCHED
    return outcome, result, script_missing_tag


def patch_index_lms(folder, ctx):
    """
    Insert the init block and the script reference into index_lms.html.
    Bytes that are not valid UTF-8 are carried through unchanged.
    Raises UnreadableFileError when the file cannot be read.
    """
    ctx.step(f"Patching '{INDEX_LMS_FILE}'")
    index_path = os.path.join(folder, INDEX_LMS_FILE)
    if not os.path.isfile(index_path):
        ctx.error(f"'{INDEX_LMS_FILE}' not found.")
        return PatchOutcome.FAILED
    try:
        with open(index_path, 'r', encoding='utf-8', errors='surrogateescape', newline='') as f:
            original = f.read()
    except OSError as e:
        raise UnreadableFileError(f"Could not read '{INDEX_LMS_FILE}': {e}") from e

    newline = '\r\n' if '\r\n' in original else '\n'
    lines = original.splitlines(keepends=True)

    outcome, new_lines, script_missing_tag = patch_lines(lines, newline)
    if outcome is PatchOutcome.FAILED:
        ctx.error(f"Anchor line '{ANCHOR_LINE}' not found. File left untouched.")
        return outcome
    if script_missing_tag:
        ctx.warning(f"'{BODY_CLOSE_TAG}' not found. Script reference not inserted.")
    if outcome is PatchOutcome.ALREADY_PATCHED:
        ctx.success("Already patched. No changes made.")
        return outcome

    with open(index_path, 'w', encoding='utf-8', errors='surrogateescape', newline='') as f:
        f.write(''.join(new_lines))
    ctx.success(f"'{INDEX_LMS_FILE}' patched.")
    return outcome


# --- Supporting steps ---
def ensure_scorm_api(folder, source, ctx):
    """Copy scormAPI.min.js into the folder if it is not already there."""
    target = os.path.join(folder, SCORM_API_FILE)
    if os.path.isfile(target):
        ctx.action(f"'{SCORM_API_FILE}' already present.")
        return False
    if not source or not os.path.isfile(source):
        raise MissingFileError(f"Dependency file not found: {source}")
    shutil.copyfile(source, target)
    ctx.success(f"Copied '{SCORM_API_FILE}' into the course folder.")
    return True


def rename_legacy_entry(folder, ctx):
    """Rename a legacy index.html entry file to story.html."""
    legacy_path = os.path.join(folder, LEGACY_ENTRY_FILE)
    story_path = os.path.join(folder, STORY_FILE)
    if not os.path.isfile(legacy_path):
        return False
    if os.path.exists(story_path):
        ctx.warning(f"Both '{LEGACY_ENTRY_FILE}' and '{STORY_FILE}' exist. Leaving them as they are.")
        return False
    os.rename(legacy_path, story_path)
    ctx.action(f"Renamed '{LEGACY_ENTRY_FILE}' to '{STORY_FILE}'.")
    return True


# --- Archiver ---
def archive_path_for(folder):
    folder = os.path.normpath(str(folder))
    return os.path.join(os.path.dirname(folder), ZIP_OUTPUT_DIR, os.path.basename(folder) + '.zip')


def archive_folder(folder, ctx):
    """Zip the folder's contents into <parent>/ZippedFiles/<name>.zip."""
    folder = os.path.normpath(str(folder))
    ctx.step(f"Zipping '{os.path.basename(folder)}'")
    if not os.path.isdir(folder):
        raise MissingFileError(f"Folder not found: {folder}")
    if not os.listdir(folder):
        raise EmptyFolderError(f"Folder is empty: {folder}")

    zip_path = archive_path_for(folder)
    os.makedirs(os.path.dirname(zip_path), exist_ok=True)
    try:
        shutil.make_archive(zip_path[:-len('.zip')], 'zip', folder)
    except OSError:
        if os.path.exists(zip_path):
            os.remove(zip_path)
        raise
    ctx.success(f"Created {os.path.relpath(zip_path, os.path.dirname(folder))}")
    return zip_path


# --- Orchestration ---
def prepare_course(folder, ctx, scorm_api_source):
    """
    Run every automated step up to the score confirmation.
    Returns the course score; raises CourseProcessingError on the first failure.
    """
    name = os.path.basename(os.path.normpath(str(folder)))
    ctx.step(f"Checking compliance of '{name}'")
    if not has_completion_trigger(folder, ctx):
        raise ComplianceError(f"'{name}' has no completion trigger.")

    ctx.step("Ensuring SCORM API dependency")
    ensure_scorm_api(folder, scorm_api_source, ctx)

    if patch_index_lms(folder, ctx) is PatchOutcome.FAILED:
        raise AnchorNotFoundError(f"Could not patch '{INDEX_LMS_FILE}' in '{name}'.")

    rename_legacy_entry(folder, ctx)

    result = check_archive_ready(folder, ctx)
    if not result.compliant:
        raise ComplianceError(f"'{name}' is not compliant: {'; '.join(result.reasons)}", result.reasons)

    return _score_or_raise(folder, ctx, name)


def _score_or_raise(folder, ctx, name):
    ctx.step("Computing course score")
    score = compute_score(folder, ctx)
    if score is None:
        raise UnreadableFileError(f"Could not compute the score of '{name}'.")
    return score


def _finish_course(report, ctx):
    mark = len(ctx.warnings)
    try:
        report.archive_path = archive_folder(report.folder, ctx)
        report.status = 'success'
    finally:
        report.warnings.extend(ctx.warnings[mark:])


def process_course(folder, ctx, scorm_api_source, confirm, preview=None):
    """Single-folder flow: prepare, let the user check the score, then zip."""
    report = CourseReport(folder)
    ctx.step(f"{'=' * 15} Processing: {report.name} {'=' * 15}")
    mark = len(ctx.warnings)
    try:
        report.score = prepare_course(folder, ctx, scorm_api_source)
        if preview is not None:
            preview(folder)
            # the hook may have edited data.js
            report.score = _score_or_raise(folder, ctx, report.name)
        if not confirm(f"Total score for '{report.name}' is {report.score}. Zip this course?"):
            raise UserDeclinedError(f"Zipping of '{report.name}' declined.")
        _finish_course(report, ctx)
    except (CourseProcessingError, OSError) as e:
        ctx.error(str(e))
        report.fail(e)
    report.warnings = ctx.warnings[mark:]
    return report


def process_bulk(root, ctx, scorm_api_source, confirm):
    """
    Bulk flow over every immediate subfolder of root.
    A failing folder is reported and skipped; the others still get zipped
    after one confirmation listing all scores.
    """
    reports = []
    for folder in list_course_folders(root, bulk=True):
        report = CourseReport(folder)
        ctx.step(f"{'=' * 15} Processing: {report.name} {'=' * 15}")
        mark = len(ctx.warnings)
        try:
            report.score = prepare_course(folder, ctx, scorm_api_source)
        except (CourseProcessingError, OSError) as e:
            ctx.error(str(e))
            report.fail(e)
        report.warnings.extend(ctx.warnings[mark:])
        reports.append(report)

    prepared = [r for r in reports if r.error is None]
    if not prepared:
        ctx.warning("No course folders passed preparation.")
        return reports

    listing = '\n'.join(f"  - {r.name}: {r.score}" for r in prepared)
    if not confirm(f"Scores:\n{listing}\nZip these {len(prepared)} course(s)?"):
        declined = UserDeclinedError("Zipping declined.")
        for report in prepared:
            report.fail(declined)
        ctx.warning("Zipping declined. No archives created.")
        return reports

    for report in prepared:
        try:
            _finish_course(report, ctx)
        except (CourseProcessingError, OSError) as e:
            ctx.error(str(e))
            report.fail(e)
    return reports


def summarize(reports):
    """Build the final summary block printed after a run."""
    successful = [r for r in reports if r.succeeded]
    failed = [r for r in reports if not r.succeeded]
    with_warnings = [r for r in reports if r.warnings]
    lines = ["", "=" * 20 + " Final Summary " + "=" * 20]
    lines.append(f"\n✅ Successfully processed: {len(successful)} course(s)")
    for r in successful:
        lines.append(f"  - {r.name} (score {r.score})")
    lines.append(f"\n❌ Failed or skipped: {len(failed)} course(s)")
    for r in failed:
        lines.append(f"  - {r.name}: {r.error}")
    lines.append(f"\n⚠️ Warnings generated: {len(with_warnings)} course(s) had warnings")
    for r in with_warnings:
        lines.append(f"\n  --- Warnings for {r.name}: ---")
        for i, warning in enumerate(r.warnings, 1):
            lines.append(f"    {i}. {warning}")
    lines.append("=" * 55)
    return '\n'.join(lines)
