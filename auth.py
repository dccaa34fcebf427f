import re
from datetime import datetime

from flask import (
    Blueprint, current_app, render_template, request, redirect, url_for, flash, abort
)
from flask_login import LoginManager, current_user, login_required, login_user, logout_user
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from models import RoleRecord, User, db
from roles import Role, ROLES

bp = Blueprint("auth", __name__, url_prefix="/account")

login_manager = LoginManager()
login_manager.login_view = "auth.login"
login_manager.login_message_category = "warning"

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
LANGUAGES = ["es-MX", "en-US"]


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


# ===== Mail =====
def send_mail(to, subject, body):
    """Hand a message to the configured MAIL_SENDER; always log it."""
    current_app.logger.info("Mail to %s: %s", to, subject)
    sender = current_app.config.get("MAIL_SENDER")
    if sender is not None:
        sender(to, subject, body)


# ===== Email confirmation tokens =====
def _serializer():
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="email-confirm")


def generate_confirmation_token(user):
    return _serializer().dumps({"id": user.id, "email": user.email})


def verify_confirmation_token(token):
    """Return the user the token was issued for, or None if it is invalid or expired."""
    max_age = current_app.config["EMAIL_TOKEN_MAX_AGE"]
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        current_app.logger.info("Expired confirmation token")
        return None
    except BadSignature:
        current_app.logger.warning("Invalid confirmation token")
        return None
    user = db.session.get(User, data.get("id"))
    if user is None or user.email != data.get("email"):
        return None
    return user


def send_confirmation(user):
    link = url_for("auth.confirm_email", token=generate_confirmation_token(user), _external=True)
    send_mail(
        user.email,
        "Confirm your email",
        f"Please confirm your account by opening this link: {link}",
    )


# ===== Users and roles =====
def get_role_record(role):
    return RoleRecord.query.filter_by(name=Role.from_name(role).role_name).first()


def set_user_role(user, role):
    """Give `user` exactly one role."""
    record = get_role_record(role)
    if record is None:
        raise ValueError(f"Role {role} has not been created")
    user.roles = [record]


def create_user(email, password, firstname, lastname, company, role=Role.COMPANY,
                accept_terms_of_service=True, email_confirmed=False, approved=False):
    user = User(
        email=email.strip().lower(),
        firstname=firstname.strip(),
        lastname=lastname.strip(),
        company=company.strip(),
        accept_terms_of_service=accept_terms_of_service,
        email_confirmed=email_confirmed,
        approved=approved,
    )
    user.set_password(password)
    set_user_role(user, role)
    db.session.add(user)
    return user


def init_roles():
    """Create the roles and make sure the configured super admin exists."""
    for role in ROLES:
        if get_role_record(role) is None:
            db.session.add(RoleRecord(name=role.role_name))
    db.session.flush()

    email = (current_app.config.get("SUPERADMIN_EMAIL") or "").strip().lower()
    password = current_app.config.get("SUPERADMIN_PASSWORD")
    if not email or not password:
        current_app.logger.info("No super admin configured")
        db.session.commit()
        return

    user = User.query.filter_by(email=email).first()
    if user is None:
        user = create_user(
            email,
            password,
            current_app.config["SUPERADMIN_FIRSTNAME"],
            current_app.config["SUPERADMIN_LASTNAME"],
            current_app.config["SUPERADMIN_COMPANY"],
            role=Role.ADMIN,
            email_confirmed=True,
            approved=True,
        )
        current_app.logger.info("Created super admin %s", email)
    else:
        set_user_role(user, Role.ADMIN)
    db.session.commit()


def validate_password(password, confirm):
    errors = []
    min_length = current_app.config["MIN_PASSWORD_LENGTH"]
    if len(password) < min_length:
        errors.append(f"The password must be at least {min_length} characters long.")
    if password != confirm:
        errors.append("The password and confirmation password do not match.")
    return errors


def _safe_next(target):
    # Only local redirects
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return None


# ===== Routes =====
@bp.route("/register", methods=["GET", "POST"])
def register():
    if current_user.is_authenticated:
        return redirect(url_for("admin.dashboard"))

    form = request.form
    if request.method == "POST":
        firstname = form.get("firstname", "").strip()
        lastname = form.get("lastname", "").strip()
        company = form.get("company", "").strip()
        email = form.get("email", "").strip().lower()
        password = form.get("password", "")
        confirm = form.get("confirm_password", "")
        accept = form.get("accept_terms_of_service") == "on"

        errors = []
        if not (firstname and lastname and company and email):
            errors.append("Please fill all required fields.")
        if email and not EMAIL_RE.match(email):
            errors.append(f"The value '{email}' is invalid.")
        if not accept:
            errors.append("You must accept the privacy policy.")
        errors += validate_password(password, confirm)
        if email and User.query.filter_by(email=email).first() is not None:
            errors.append(f"Email '{email}' is already taken.")

        if errors:
            for error in errors:
                flash(error, "danger")
            return render_template("auth/register.html", form=form), 400

        user = create_user(
            email, password, firstname, lastname, company,
            accept_terms_of_service=accept,
            approved=current_app.config["AUTO_APPROVE_USERS"],
        )
        db.session.commit()
        current_app.logger.info("User %s created a new account with password.", email)
        send_confirmation(user)
        return render_template("auth/register_confirmation.html", email=email)

    return render_template("auth/register.html", form=form)


@bp.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "POST":
        email = request.form.get("email", "").strip().lower()
        password = request.form.get("password", "")
        user = User.query.filter_by(email=email).first()

        if user is None or not user.check_password(password):
            current_app.logger.info("Failed login for %s", email)
            flash("Invalid login attempt.", "danger")
            return render_template("auth/login.html"), 401
        if not user.email_confirmed:
            flash("You must confirm your email before logging in.", "warning")
            return render_template("auth/login.html"), 403
        if not user.approved:
            flash("Your account has not been approved by an administrator yet.", "warning")
            return render_template("auth/login.html"), 403

        login_user(user, remember=request.form.get("remember") == "on")
        user.last_access = datetime.utcnow()
        db.session.commit()
        current_app.logger.info("User %s logged in.", email)
        return redirect(_safe_next(request.args.get("next")) or url_for("admin.dashboard"))

    return render_template("auth/login.html")


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    flash("Logged out.", "info")
    return redirect(url_for("site.index"))


@bp.route("/confirm/<token>")
def confirm_email(token):
    user = verify_confirmation_token(token)
    if user is None:
        flash("Error confirming your email.", "danger")
        return render_template("auth/confirm_email.html", confirmed=False), 400
    if not user.email_confirmed:
        user.email_confirmed = True
        db.session.commit()
        current_app.logger.info("User %s confirmed email", user.email)
    return render_template("auth/confirm_email.html", confirmed=True)


@bp.route("/resend-confirmation", methods=["GET", "POST"])
def resend_confirmation():
    if request.method == "POST":
        email = request.form.get("email", "").strip().lower()
        user = User.query.filter_by(email=email).first()
        # Same answer whether or not the account exists
        if user is not None and not user.email_confirmed:
            send_confirmation(user)
        flash("Verification email sent. Please check your email.", "info")
        return redirect(url_for("auth.login"))
    return render_template("auth/resend_confirmation.html")


@bp.route("/manage", methods=["GET", "POST"])
@login_required
def manage():
    if request.method == "POST":
        firstname = request.form.get("firstname", "").strip()
        lastname = request.form.get("lastname", "").strip()
        company = request.form.get("company", "").strip()
        language = request.form.get("language", current_user.language)
        if not (firstname and lastname and company):
            flash("Please fill all required fields.", "warning")
            return render_template("auth/manage.html", languages=LANGUAGES), 400
        if language not in LANGUAGES:
            abort(400)
        current_user.firstname = firstname
        current_user.lastname = lastname
        current_user.company = company
        current_user.language = language
        db.session.commit()
        flash("Your profile has been updated.", "success")
        return redirect(url_for("auth.manage"))
    return render_template("auth/manage.html", languages=LANGUAGES)
