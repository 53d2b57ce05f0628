import os
import sys
import logging

from logging_config import setup_logging
from course_tools import (
    ProcessingContext,
    process_bulk,
    process_course,
    summarize,
)

YES_ANSWERS = ['yes', 'y']
NO_ANSWERS = ['no', 'n']


def ask_yes_no(question, input_fn=input, print_fn=print):
    """Blocking yes/no prompt; repeats until the answer is understood."""
    while True:
        answer = input_fn(f"{question} (yes/no): ").strip().lower()
        if answer in YES_ANSWERS:
            return True
        if answer in NO_ANSWERS:
            return False
        print_fn("   Invalid input.")


def _ask_directory(input_fn, print_fn):
    while True:
        work_dir = input_fn("1. Enter the path to the course folder: ").strip()
        if os.path.isdir(work_dir):
            return work_dir
        print_fn("   ❌ ERROR: Invalid directory.")


def _ask_mode(input_fn, print_fn):
    while True:
        mode = input_fn("2. Process this folder as one course or every subfolder? ('single' or 'bulk'): ").strip().lower()
        if mode in ['single', 'bulk']:
            return mode
        print_fn("   ❌ ERROR: Invalid input.")


def _ask_scorm_api(work_dir, input_fn, print_fn):
    default = os.environ.get('SCORM_API_FILE_PATH', '')
    while True:
        prompt = "3. Enter path to 'scormAPI.min.js'"
        prompt += f" [{default}]: " if default else ": "
        answer = input_fn(prompt).strip() or default
        path = answer if os.path.isabs(answer) else os.path.join(work_dir, answer)
        if answer and os.path.isfile(path):
            return path
        print_fn(f"   ❌ ERROR: File not found at '{path}'.")


def run_once(input_fn=input, print_fn=print, log=None):
    """One full run: ask for the inputs, process, print the summary."""
    work_dir = _ask_directory(input_fn, print_fn)
    mode = _ask_mode(input_fn, print_fn)
    scorm_api = _ask_scorm_api(work_dir, input_fn, print_fn)

    ctx = ProcessingContext(log=log, echo=print_fn)

    def confirm(question):
        return ask_yes_no(question, input_fn, print_fn)

    if mode == 'single':
        reports = [process_course(work_dir, ctx, scorm_api, confirm)]
    else:
        reports = process_bulk(work_dir, ctx, scorm_api, confirm)
        if not reports:
            print_fn("     ⚠️ WARNING: No course folders found.")
    print_fn(summarize(reports))
    return reports


def main(input_fn=input, print_fn=print):
    print_fn("--- SCORM Course Packager ---")
    log = setup_logging(logging.getLogger('scorm_packager'), console=False)
    all_ok = True
    while True:
        reports = run_once(input_fn, print_fn, log)
        all_ok = all_ok and all(r.succeeded for r in reports)
        if ask_yes_no("Exit the packager?", input_fn, print_fn):
            break
    print_fn("\nAll tasks complete!")
    return 0 if all_ok else 1


if __name__ == '__main__':
    sys.exit(main())
