from flask import Flask, jsonify, request
import logging
import os
from dotenv import load_dotenv
from werkzeug.middleware.proxy_fix import ProxyFix

print("\n=== DEBUG APP INITIALIZATION ===")

# Load environment variables BEFORE importing services that read them
load_dotenv()
print(f"DEBUG: .env file loaded")

from overlap_engine.config import env_flag
from overlap_engine.services.credit_ledger import credit_ledger
from overlap_engine.services.errors import GenerationError, ReportEngineError, RequestValidationError
from overlap_engine.services.report_orchestrator import generate_report
from overlap_engine.services.schemas import validate_report_request
from overlap_engine.services.style_contracts import list_style_contracts
from overlap_engine.utils.auth_utils import current_user, login_required

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO'),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.getenv('SECRET_KEY', 'dev-secret-key')
print(f"DEBUG: Flask app created")
print(f"DEBUG: SECRET_KEY set: {bool(app.secret_key)}")

# Trust one proxy hop for scheme/host when deployed behind a reverse proxy
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE='Lax',
    AUTH_DISABLED=env_flag('AUTH_DISABLED', False),
)

print(f"DEBUG: AUTH_DISABLED: {app.config['AUTH_DISABLED']}")
print(f"DEBUG: OPENAI_API_KEY: {'SET' if os.getenv('OPENAI_API_KEY') else 'None'}")
print(f"DEBUG: OPENAI_MODEL: {os.getenv('OPENAI_MODEL', 'default')}")


@app.route('/health')
def health():
    return jsonify({'status': 'ok'})


@app.route('/api/styles')
def get_styles():
    """List style contracts; the first entry is the default"""
    styles = [contract.to_dict() for contract in list_style_contracts()]
    return jsonify({'styles': styles, 'default': styles[0]['styleId']})


@app.route('/api/report', methods=['POST'])
@login_required
def create_report():
    """Generate an Overlap Analysis Report from {premise, styleId}"""
    user = current_user()

    # Subscription and credit checks happen before any generation call
    access = credit_ledger.get_access(user)
    if not access['active']:
        return jsonify({'error': 'Subscription inactive'}), 403
    if access['credits'] <= 0:
        return jsonify({'error': 'No report credits remaining'}), 402

    try:
        body = validate_report_request(request.get_json(silent=True))
    except RequestValidationError as e:
        return jsonify({'error': 'Invalid request', 'details': e.errors}), 400

    print(f"\n=== DEBUG /api/report ===")
    print(f"User: {user}")
    print(f"Style: {body.style_id}")
    print(f"Premise length: {len(body.premise)}")

    try:
        result = generate_report(body.premise, body.style_id)
    except ReportEngineError as e:
        phase = e.phase if isinstance(e, GenerationError) else None
        logger.error(f"report_error: {type(e).__name__}: {e} (phase={phase})")
        payload = {'error': str(e)}
        if app.debug:
            payload['type'] = type(e).__name__
        return jsonify(payload), 500
    except Exception as e:
        logger.exception(f"Unexpected report failure: {type(e).__name__}")
        return jsonify({'error': 'Failed to generate report'}), 500

    remaining = credit_ledger.decrement(user)
    logger.info(f"Report generated for {user}: style={result.style_id}, credits_remaining={remaining}")

    response = {'report': result.report, 'styleId': result.style_id}
    if request.args.get('debug') in ('1', 'true'):
        response.update(result.to_debug_dict())
    return jsonify(response)


if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=int(os.getenv('PORT', '5000')))
