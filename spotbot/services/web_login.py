"""Login and consent flows on the automation session.

Each flow is an ordered sequence of session primitives. They are only ever
run from inside an automation channel task.
"""

from spotbot.config import Settings
from spotbot.exceptions import ConfigurationException
from spotbot.logging_config import get_logger, log_with_context
from spotbot.protocols import AutomationSessionProtocol

logger = get_logger(__name__)

# Web player
WEB_LOGIN_BUTTON = "xpath=//button[normalize-space()='Log in']"
USER_WIDGET = "[data-testid='user-widget-name']"

# Spotify accounts
USERNAME_FIELD = "#login-username"
PASSWORD_FIELD = "#login-password"
ACCOUNTS_LOGIN_BUTTON = "#login-button"
AUTH_ACCEPT_BUTTON = "#auth-accept"
RELOAD_BUTTON = "#reload-button"

# Facebook
FACEBOOK_LOGIN_LINK = "xpath=//a[normalize-space()='Log in with Facebook']"
FACEBOOK_EMAIL_FIELD = "#email"
FACEBOOK_PASSWORD_FIELD = "#pass"
FACEBOOK_LOGIN_BUTTON = "#loginbutton"


async def ensure_logged_in(session: AutomationSessionProtocol, settings: Settings) -> bool:
    """Make sure the web player is logged in.

    Loading the web player also registers the browser as a Connect device.

    Returns:
        True if an interactive login was performed, False if the session
        was already authenticated.
    """
    await session.navigate(f"{settings.spotify_web_url}/")

    login_button = await session.find_element(WEB_LOGIN_BUTTON)
    if login_button is None:
        await session.wait_until(USER_WIDGET)
        log_with_context(logger, "info", "Browser session already logged in", event_type="web_login_skipped")
        return False

    await session.click(login_button)
    await session.wait_for_detached(login_button)
    await log_in(session, settings)
    return True


async def log_in(session: AutomationSessionProtocol, settings: Settings) -> None:
    """Fill in the accounts login form, via Facebook when no Spotify username is set."""
    if not settings.has_login_credentials:
        raise ConfigurationException(
            "No login credentials configured for the browser session",
            details={"settings": ["SPOTIFY_USERNAME", "SPOTIFY_PASSWORD", "FB_EMAIL", "FB_PASSWORD"]},
        )

    if settings.spotify_username:
        username = await session.wait_until(USERNAME_FIELD)
        await session.type(username, settings.spotify_username)
        password = await session.wait_until(PASSWORD_FIELD)
        await session.type(password, settings.spotify_password)
        submit = await session.wait_until(ACCOUNTS_LOGIN_BUTTON)
        await session.click(submit)
        await session.wait_for_detached(submit)
        log_with_context(logger, "info", "Logged in with Spotify credentials", event_type="web_login")
        return

    facebook_link = await session.wait_until(FACEBOOK_LOGIN_LINK)
    await session.click(facebook_link)
    await session.wait_for_detached(facebook_link)

    # Facebook credentials may already be cached in the profile
    facebook_button = await session.find_element(FACEBOOK_LOGIN_BUTTON)
    if facebook_button is not None:
        email = await session.wait_until(FACEBOOK_EMAIL_FIELD)
        await session.type(email, settings.fb_email)
        password = await session.wait_until(FACEBOOK_PASSWORD_FIELD)
        await session.type(password, settings.fb_password)
        await session.click(facebook_button)
        await session.wait_for_detached(facebook_button)

    await accept_consent(session)
    log_with_context(logger, "info", "Logged in via Facebook", event_type="web_login")


async def accept_consent(session: AutomationSessionProtocol) -> bool:
    """Click the accounts consent button if the page shows one."""
    accept = await session.find_element(AUTH_ACCEPT_BUTTON)
    if accept is None:
        return False
    await session.click(accept)
    await session.wait_for_detached(accept)
    log_with_context(logger, "info", "Accepted Spotify authorization consent", event_type="web_consent")
    return True


async def grant_authorization(session: AutomationSessionProtocol, settings: Settings, authorize_url: str) -> None:
    """Walk the OAuth consent page so Spotify redirects to the callback with a code."""
    await session.navigate(authorize_url)

    # Intermittent ERR_CONNECTION_CLOSED page
    reload_button = await session.find_element(RELOAD_BUTTON)
    if reload_button is not None:
        log_with_context(logger, "warning", "Authorization page failed to load, reloading", event_type="web_reload")
        await session.click(reload_button)
        await session.navigate(authorize_url)

    login_button = await session.find_element(ACCOUNTS_LOGIN_BUTTON)
    if login_button is not None:
        await log_in(session, settings)

    await accept_consent(session)
