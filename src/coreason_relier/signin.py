# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relier

"""
Sign-in orchestration: drives one authentication attempt and decides the next step.
"""

from collections.abc import Callable
from enum import StrEnum
from typing import Any, Protocol

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr

from coreason_relier.auth_client import AuthenticationService
from coreason_relier.broker import Broker, Capability, NavigateBehavior
from coreason_relier.exceptions import AuthError, AuthErrorKind
from coreason_relier.models import (
    Account,
    OutcomeKind,
    SignInOutcome,
    VerificationMethod,
    VerificationReason,
)
from coreason_relier.relier import OAuthRelier
from coreason_relier.session import stringified_resume_token
from coreason_relier.telemetry import EventLogger
from coreason_relier.utils.logger import anonymize, logger

tracer = trace.get_tracer(__name__)

# Experiment group -> forced verification method
EXPERIMENT_VERIFICATION_METHODS: dict[str, VerificationMethod] = {
    "treatment-code": VerificationMethod.EMAIL_2FA,
    "treatment-link": VerificationMethod.EMAIL,
}

# (reason, method) of an unverified account -> (outcome, screen)
UNVERIFIED_OUTCOMES: dict[tuple[VerificationReason, VerificationMethod], tuple[OutcomeKind, str]] = {
    (VerificationReason.SIGN_IN, VerificationMethod.EMAIL): (OutcomeKind.NEEDS_SIGNIN_CONFIRMATION, "confirm_signin"),
    (VerificationReason.SIGN_IN, VerificationMethod.EMAIL_2FA): (OutcomeKind.NEEDS_EMAIL_CODE, "signin_token_code"),
    (VerificationReason.SIGN_IN, VerificationMethod.TOTP_2FA): (OutcomeKind.NEEDS_TOTP_CODE, "signin_totp_code"),
}


class SignInState(StrEnum):
    INIT = "init"
    BEFORE_SIGN_IN = "before_sign_in"
    AUTHENTICATING = "authenticating"
    AWAITING_PERMISSIONS = "awaiting_permissions"
    COMPUTING_OUTCOME = "computing_outcome"
    REMEDIATING_BLOCK = "remediating_block"
    COMPLETE = "complete"
    FAILED = "failed"


class Navigator(Protocol):
    def navigate(self, screen: str, data: dict[str, Any]) -> None: ...


class FormPrefill(Protocol):
    def clear(self) -> None: ...


class SignInOrchestrator:
    """
    Signs an account in on behalf of a resolved relier.

    Attributes:
        state (SignInState): The current state.
        history (list[SignInState]): Every state entered, in order.
    """

    def __init__(
        self,
        relier: OAuthRelier,
        broker: Broker,
        auth_client: AuthenticationService,
        navigator: Navigator,
        *,
        event_logger: EventLogger,
        experiment_group: Callable[[], str | None] | None = None,
        form_prefill: FormPrefill | None = None,
        after_sign_in_broker_method: str = "after_sign_in",
        after_sign_in_navigate_data: dict[str, Any] | None = None,
        current_page: str | None = None,
        redirect_to: str | None = None,
        resume_params: dict[str, str | None] | None = None,
        pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt"),
    ) -> None:
        """
        Initialize the SignInOrchestrator.

        Args:
            relier: The resolved relier. Read-only apart from its known uid.
            broker: The host integration's capability set.
            auth_client: The authentication service.
            navigator: Opaque "go to named screen" capability.
            event_logger: Receives the sign-in telemetry events.
            experiment_group: Returns the user's verification experiment group, if any.
            form_prefill: Prefilled form state cleared after a successful sign-in.
            after_sign_in_broker_method: Broker hook invoked on success.
            after_sign_in_navigate_data: Data attached to a redirect-override behavior.
            current_page: Screen to return to from the unblock screen.
            redirect_to: Redirect override; defaults to the relier's `redirect_to`.
            resume_params: Extra resume token fields (entrypoint, utm_*).
            pii_salt: Salt for anonymizing uids in logs.
        """
        self.relier = relier
        self.broker = broker
        self.auth_client = auth_client
        self.navigator = navigator
        self.event_logger = event_logger
        self.experiment_group = experiment_group
        self.form_prefill = form_prefill
        self.after_sign_in_broker_method = after_sign_in_broker_method
        self.after_sign_in_navigate_data = after_sign_in_navigate_data or {}
        self.current_page = current_page
        self.resume_params = resume_params or {}
        self.pii_salt = pii_salt
        self._redirect_to = redirect_to
        self._redirect_consumed = False
        self.state = SignInState.INIT
        self.history: list[SignInState] = [SignInState.INIT]

    def _transition(self, state: SignInState) -> None:
        logger.debug(f"Sign-in: {self.state} -> {state}")
        self.state = state
        self.history.append(state)

    def _anonymize(self, uid: str | None) -> str:
        return anonymize(uid, self.pii_salt.get_secret_value())

    @property
    def pending_redirect_to(self) -> str | None:
        if self._redirect_consumed:
            return None
        return self._redirect_to or self.relier.config.redirect_to

    def _verification_method_override(self) -> VerificationMethod | None:
        if self.experiment_group is None:
            return None
        return EXPERIMENT_VERIFICATION_METHODS.get(self.experiment_group() or "")

    def _navigate(self, outcome: SignInOutcome) -> SignInOutcome:
        if outcome.screen is not None:
            self.navigator.navigate(outcome.screen, outcome.data)
        if self.state != SignInState.AWAITING_PERMISSIONS:
            self._transition(SignInState.COMPLETE)
        return outcome

    async def sign_in(
        self,
        account: Account | None,
        password: str | None = None,
        *,
        unblock_code: str | None = None,
    ) -> SignInOutcome:
        """
        Sign in a user.

        Args:
            account: The account being signed in to.
            password: The user's password. May be None if the account holds a session token.
            unblock_code: Code from an unblock email, when retrying a blocked sign-in.

        Returns:
            SignInOutcome: The next step, already handed to the navigator.

        Raises:
            AuthError: UNEXPECTED_ERROR if the preconditions fail; THROTTLED or
                REQUEST_BLOCKED if the block cannot be remediated (or sending the
                unblock email failed); any other authentication error unchanged.
        """
        if account is None or account.is_default() or (not account.has_session_token() and not password):
            self._transition(SignInState.FAILED)
            raise AuthError(AuthErrorKind.UNEXPECTED_ERROR, "Account is not signed-in-able")

        with tracer.start_as_current_span("sign_in") as span:
            try:
                outcome = await self._attempt(account, password, unblock_code)
            except AuthError as e:
                span.add_event("sign_in_error", {"kind": str(e.kind)})
                try:
                    outcome = await self._on_sign_in_error(account, password, e)
                except Exception as err:
                    self._fail(span, err)
                    raise
            except Exception as e:
                self._fail(span, e)
                raise

            span.set_attribute("sign_in.outcome", str(outcome.kind))
            span.set_status(Status(StatusCode.OK))
            return outcome

    def _fail(self, span: Any, error: Exception) -> None:
        self._transition(SignInState.FAILED)
        logger.warning(f"Sign-in failed: {getattr(error, 'kind', type(error).__name__)}")
        span.record_exception(error)
        span.set_status(Status(StatusCode.ERROR, str(error)))

    async def _attempt(self, account: Account, password: str | None, unblock_code: str | None) -> SignInOutcome:
        self._transition(SignInState.BEFORE_SIGN_IN)
        await self.broker.invoke_method("before_sign_in", account)

        # Always `signin`, even when signing in from the signup screen.
        self.event_logger.log_flow_event("attempt", "signin")

        verification_method = self._verification_method_override()

        # Brokers that take over the session token expect a fresh one per sign-in.
        if account.has_session_token() and not self.broker.has_capability(Capability.REUSE_EXISTING_SESSION):
            account.discard_session_token()

        self._transition(SignInState.AUTHENTICATING)
        account = await self.auth_client.sign_in_account(
            account,
            password,
            self.relier,
            resume=stringified_resume_token(account, **self.resume_params),
            unblock_code=unblock_code,
            verification_method=verification_method,
        )

        if self.form_prefill is not None:
            self.form_prefill.clear()

        if self.relier.account_needs_permissions(account):
            self._transition(SignInState.AWAITING_PERMISSIONS)
            return self._navigate(
                SignInOutcome(
                    kind=OutcomeKind.NEEDS_PERMISSION_CONSENT,
                    screen="signin_permissions",
                    # the permissions screen calls back with the updated account
                    data={"account": account, "on_submit_complete": self.on_sign_in_success},
                )
            )

        return await self.on_sign_in_success(account)

    async def _on_sign_in_error(self, account: Account, password: str | None, error: AuthError) -> SignInOutcome:
        if error.is_kind(AuthErrorKind.THROTTLED, AuthErrorKind.REQUEST_BLOCKED):
            return await self.on_sign_in_blocked(account, password, error)

        if error.is_kind(AuthErrorKind.EMAIL_HARD_BOUNCE, AuthErrorKind.EMAIL_SENT_COMPLAINT):
            return self._navigate(
                SignInOutcome(kind=OutcomeKind.BOUNCED, screen="signin_bounced", data={"email": account.email})
            )

        raise error

    async def on_sign_in_blocked(self, account: Account, password: str | None, error: AuthError) -> SignInOutcome:
        """
        Route a blocked sign-in to the unblock screen, if it can be unblocked.

        Raises:
            AuthError: `error` itself when it cannot be unblocked, or the failure
                of sending the unblock email.
        """
        if (
            error.verification_reason == VerificationReason.SIGN_IN
            and error.verification_method == VerificationMethod.EMAIL_CAPTCHA
        ):
            self._transition(SignInState.REMEDIATING_BLOCK)
            # Sending may itself be rate limited; that error is shown on this screen.
            await self.auth_client.send_unblock_email(account)
            return self._navigate(
                SignInOutcome(
                    kind=OutcomeKind.BLOCKED,
                    screen="signin_unblock",
                    reason=str(error.kind),
                    data={"account": account, "last_page": self.current_page, "password": password},
                )
            )

        raise error

    async def on_sign_in_success(self, account: Account) -> SignInOutcome:
        """
        Compute the outcome for an authenticated account with no pending consent.

        Also the completion callback of the permissions screen.
        """
        self._transition(SignInState.COMPUTING_OUTCOME)

        if not account.verified:
            key = (account.verification_reason, account.verification_method)
            kind, screen = UNVERIFIED_OUTCOMES.get(key, (OutcomeKind.NEEDS_EMAIL_CONFIRMATION, "confirm"))  # type: ignore[arg-type]
            return self._navigate(SignInOutcome(kind=kind, screen=screen, data={"account": account}))

        # Keep the relier's uid current, or the user ends up with an expired
        # session after e.g. a force-auth sign-in whose uid changed.
        if account.uid != self.relier.uid and self.broker.has_capability(Capability.ALLOW_UID_CHANGE):
            logger.info(f"Relier uid updated to {self._anonymize(account.uid)}")
            self.relier.set_uid(account.uid)

        self.event_logger.log_event("signin.success")
        self.event_logger.log_event("signin.success.skip-confirm")
        self.event_logger.log_view_event("signin.success")

        broker_method = self.after_sign_in_broker_method
        redirect_to = self.pending_redirect_to
        if redirect_to:
            self._redirect_consumed = True
            self.broker.set_behavior(
                broker_method, NavigateBehavior(endpoint=redirect_to), self.after_sign_in_navigate_data
            )

        result = await self.broker.invoke_method(broker_method, account)
        logger.info(f"Account {self._anonymize(account.uid)} signed in")
        return self._navigate(SignInOutcome(kind=OutcomeKind.SUCCESS, result=result))
