# app.py
# --- Web front end for validating, patching, scoring and zipping course exports ---

import os
import shutil
import zipfile
import json
from functools import wraps
from urllib.request import urlopen

from flask import Flask, request, send_from_directory, jsonify
from flask_cors import CORS
from werkzeug.utils import secure_filename
from jose import jwt

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from logging_config import setup_logging
import course_tools
from course_tools import (
    ComplianceError,
    CourseProcessingError,
    ProcessingContext,
    ZIP_OUTPUT_DIR,
)

# --- Auth0 Configuration from Environment Variables ---
AUTH0_DOMAIN = os.environ.get('AUTH0_DOMAIN')
API_AUDIENCE = os.environ.get('API_AUDIENCE')
ALGORITHMS = ["RS256"]

if not AUTH0_DOMAIN or not API_AUDIENCE:
    raise RuntimeError("Missing required Auth0 environment variables (AUTH0_DOMAIN, API_AUDIENCE).")

# --- Flask App Initialization ---
app = Flask(__name__)
CORS(app)

app.config['RATELIMIT_ENABLED'] = os.environ.get('RATELIMIT_ENABLED', 'true').lower() != 'false'
limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=["200 per day", "50 per hour"],
    storage_uri="memory://",
)

setup_logging(app.logger)

app.config['UPLOAD_FOLDER'] = os.environ.get('UPLOAD_FOLDER', 'uploads')
app.config['SCORM_API_FILE_PATH'] = os.environ.get('SCORM_API_FILE_PATH', 'special_files/scormAPI.min.js')
app.config['AUTH0_DOMAIN'] = AUTH0_DOMAIN
app.config['API_AUDIENCE'] = API_AUDIENCE
app.config['AUTH_ENABLED'] = True
os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)


# --- Authentication Decorator ---
class AuthError(Exception):
    def __init__(self, error, status_code):
        self.error = error
        self.status_code = status_code

@app.errorhandler(AuthError)
def handle_auth_error(ex):
    response = jsonify(ex.error)
    response.status_code = ex.status_code
    return response

def get_token_auth_header():
    auth = request.headers.get("Authorization", None)
    if not auth:
        raise AuthError({"code": "authorization_header_missing", "description": "Authorization header is expected"}, 401)
    parts = auth.split()
    if parts[0].lower() != "bearer":
        raise AuthError({"code": "invalid_header", "description": "Authorization header must start with Bearer"}, 401)
    elif len(parts) == 1:
        raise AuthError({"code": "invalid_header", "description": "Token not found"}, 401)
    elif len(parts) > 2:
        raise AuthError({"code": "invalid_header", "description": "Authorization header must be Bearer token"}, 401)
    return parts[1]

def requires_auth(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not app.config['AUTH_ENABLED']:
            return f(None, *args, **kwargs)
        domain = app.config['AUTH0_DOMAIN']
        token = get_token_auth_header()
        jsonurl = urlopen(f"https://{domain}/.well-known/jwks.json")
        jwks = json.loads(jsonurl.read())
        try:
            unverified_header = jwt.get_unverified_header(token)
        except jwt.JWTError:
            raise AuthError({"code": "invalid_header", "description": "Unable to parse authentication token."}, 400)
        rsa_key = {}
        for key in jwks["keys"]:
            if key["kid"] == unverified_header.get("kid"):
                rsa_key = {"kty": key["kty"], "kid": key["kid"], "use": key["use"], "n": key["n"], "e": key["e"]}
        if rsa_key:
            try:
                payload = jwt.decode(token, rsa_key, algorithms=ALGORITHMS, audience=app.config['API_AUDIENCE'], issuer=f"https://{domain}/")
            except jwt.ExpiredSignatureError:
                raise AuthError({"code": "token_expired", "description": "token is expired"}, 401)
            except jwt.JWTClaimsError:
                raise AuthError({"code": "invalid_claims", "description": "incorrect claims, please check the audience and issuer"}, 401)
            except Exception:
                raise AuthError({"code": "invalid_header", "description": "Unable to parse authentication token."}, 400)
            return f(payload, *args, **kwargs)
        raise AuthError({"code": "invalid_header", "description": "Unable to find appropriate key"}, 400)
    return decorated


# --- Helpers ---
def _context():
    return ProcessingContext(log=app.logger)

def _course_path(name):
    """Resolve an uploaded course name to its folder, or None."""
    safe_name = secure_filename(name or '')
    if not safe_name or safe_name == ZIP_OUTPUT_DIR:
        return None
    path = os.path.join(app.config['UPLOAD_FOLDER'], safe_name)
    return path if os.path.isdir(path) else None

def _course_from_request():
    data = request.get_json(silent=True) or {}
    return data.get('course'), _course_path(data.get('course'))

def _purge_directory(directory):
    """Helper function to delete all files in a directory."""
    for filename in os.listdir(directory):
        file_path = os.path.join(directory, filename)
        try:
            if os.path.isfile(file_path) or os.path.islink(file_path):
                os.unlink(file_path)
            elif os.path.isdir(file_path):
                shutil.rmtree(file_path)
        except OSError as e:
            app.logger.error(f'Failed to delete {file_path}. Reason: {e}')


# --- API Endpoints ---
@app.route('/api/upload', methods=['POST'])
@limiter.limit("20 per minute")
@requires_auth
def upload_course(jwt_payload):
    """Extract an uploaded course zip into the workspace."""
    if 'file' not in request.files:
        return jsonify({"error": "No file part"}), 400
    file = request.files['file']
    if file.filename == '':
        return jsonify({"error": "No selected file"}), 400
    filename = secure_filename(file.filename)
    course_name = os.path.splitext(filename)[0]
    if not course_name or course_name == ZIP_OUTPUT_DIR:
        return jsonify({"error": "Invalid file name"}), 400

    course_dir = os.path.join(app.config['UPLOAD_FOLDER'], course_name)
    if os.path.exists(course_dir):
        shutil.rmtree(course_dir)
    os.makedirs(course_dir)
    try:
        with zipfile.ZipFile(file.stream) as zip_ref:
            zip_ref.extractall(course_dir)
    except zipfile.BadZipFile:
        shutil.rmtree(course_dir)
        app.logger.error(f"Upload {filename} is not a zip archive.")
        return jsonify({"error": "The uploaded file is not a zip archive."}), 400

    app.logger.info(f"Extracted upload {filename} to {course_dir}")
    return jsonify({"course": course_name}), 201

@app.route('/api/validate', methods=['POST'])
@requires_auth
def validate_course(jwt_payload):
    name, path = _course_from_request()
    if path is None:
        return jsonify({"error": f"Course not found: {name}"}), 404
    ctx = _context()
    trigger = course_tools.has_completion_trigger(path, ctx)
    result = course_tools.validate_folder_structure(path, ctx)
    return jsonify({
        "course": name,
        "completion_trigger": trigger,
        "compliant": trigger and result.compliant,
        "reasons": result.reasons,
        "log": ctx.messages,
    })

@app.route('/api/score', methods=['POST'])
@requires_auth
def score_course(jwt_payload):
    name, path = _course_from_request()
    if path is None:
        return jsonify({"error": f"Course not found: {name}"}), 404
    ctx = _context()
    score = course_tools.compute_score(path, ctx)
    if score is None:
        return jsonify({"error": "Score could not be computed.", "log": ctx.messages}), 422
    return jsonify({"course": name, "score": score})

@app.route('/api/process', methods=['POST'])
@limiter.limit("20 per minute")
@requires_auth
def process_course(jwt_payload):
    """Run every automated step and return the score for confirmation."""
    name, path = _course_from_request()
    if path is None:
        return jsonify({"error": f"Course not found: {name}"}), 404
    app.logger.info(f"--- Starting new processing job for: {name} ---")
    ctx = _context()
    try:
        score = course_tools.prepare_course(path, ctx, app.config['SCORM_API_FILE_PATH'])
    except (CourseProcessingError, OSError) as e:
        app.logger.error(f"--- Processing job for {name} failed: {e} ---")
        return jsonify({
            "course": name,
            "status": "failure",
            "error": str(e),
            "error_kind": getattr(e, 'kind', 'os-error'),
            "log": ctx.messages,
        }), 422
    return jsonify({"course": name, "status": "ready", "score": score, "log": ctx.messages})

@app.route('/api/bulk', methods=['POST'])
@limiter.limit("20 per minute")
@requires_auth
def process_bulk(jwt_payload):
    """Prepare every uploaded course and list the scores for one confirmation."""
    ctx = _context()
    results = []
    for folder in course_tools.list_course_folders(app.config['UPLOAD_FOLDER'], bulk=True):
        report = course_tools.CourseReport(folder)
        try:
            report.score = course_tools.prepare_course(folder, ctx, app.config['SCORM_API_FILE_PATH'])
            report.status = 'ready'
        except (CourseProcessingError, OSError) as e:
            ctx.error(str(e))
            report.fail(e)
        results.append(report.to_dict())
    return jsonify({"courses": results, "log": ctx.messages})

@app.route('/api/archive', methods=['POST'])
@requires_auth
def archive_courses(jwt_payload):
    """Confirmation step: zip every listed course."""
    data = request.get_json(silent=True) or {}
    names = data.get('courses')
    if not names:
        return jsonify({"error": "No courses provided"}), 400
    ctx = _context()
    results = []
    for name in names:
        path = _course_path(name)
        report = course_tools.CourseReport(path or name)
        if path is None:
            report.fail(course_tools.MissingFileError(f"Course not found: {name}"))
            results.append(report.to_dict())
            continue
        try:
            readiness = course_tools.check_archive_ready(path, ctx)
            if not readiness.compliant:
                raise ComplianceError(f"'{name}' is not ready to zip: {'; '.join(readiness.reasons)}", readiness.reasons)
            report.archive_path = course_tools.archive_folder(path, ctx)
            report.status = 'success'
        except (CourseProcessingError, OSError) as e:
            ctx.error(str(e))
            report.fail(e)
        entry = report.to_dict()
        if report.archive_path:
            entry['url'] = f"/download/{os.path.basename(report.archive_path)}"
        results.append(entry)
    return jsonify({"courses": results, "log": ctx.messages})

@app.route('/download/<path:filename>')
@requires_auth
def download_file(jwt_payload, filename):
    zipped_dir = os.path.abspath(os.path.join(app.config['UPLOAD_FOLDER'], ZIP_OUTPUT_DIR))
    return send_from_directory(zipped_dir, filename, as_attachment=True)

@app.route('/api/purge', methods=['POST'])
@requires_auth
def purge_workspace(jwt_payload):
    """Endpoint to clean the workspace before a new batch upload."""
    app.logger.info("Received request to purge workspace.")
    try:
        _purge_directory(app.config['UPLOAD_FOLDER'])
    except OSError as e:
        app.logger.error(f"An error occurred during workspace purge: {e}", exc_info=True)
        return jsonify({"status": "error", "message": "An error occurred during cleanup."}), 500
    app.logger.info("Workspace purged successfully.")
    return jsonify({"status": "success", "message": "Workspace purged successfully."}), 200

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
