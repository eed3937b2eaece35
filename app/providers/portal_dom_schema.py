"""
Centralized DOM schema for the recreation reservation portal (frontdesksuite).

All CSS selectors used by SeleniumBrowserDriver and RunOrchestrator are defined
here as named constants, grouped by the booking stage that uses them. A single
selector string may hold a comma-separated fallback list; the first matching
element in document order wins.

When the portal changes its markup, update selectors ONLY in this file.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class SportSelectors:
    """Sport selection and the group-size page that follows it."""

    sport_control: str = "input[name='sport'], select[name='sport'], .sport-selector"
    people_input: str = "input[name='people'], input[name='participants'], .people-input"


@dataclass(frozen=True)
class TimeSlotSelectors:
    time_control: str = "input[name='time'], select[name='time'], .time-selector"


@dataclass(frozen=True)
class ContactSelectors:
    """Contact form fields, tried in order within each tuple."""

    name_fields: tuple[str, ...] = (
        "#name",
        "#fullName",
        "input[name*='name']",
        "input[name*='full']",
        "input[placeholder*='Name']",
    )
    phone_fields: tuple[str, ...] = (
        "#phone",
        "#telephone",
        "#phoneNumber",
        "input[type='tel']",
        "input[name*='phone']",
        "input[name*='tel']",
    )
    email_fields: tuple[str, ...] = (
        "#email",
        "input[type='email']",
        "input[name*='email']",
        "input[name*='mail']",
        "input[placeholder*='mail']",
    )
    contact_submit: str = "button[type='submit'], input[type='submit']"


@dataclass(frozen=True)
class VerificationSelectors:
    """Selectors for the email verification step shown after the contact form."""

    code_input: str = "input[name='code'], input[name='verification'], .code-input"
    verify_button: str = "button[type='submit'], .verify-button"
    # Text fragments that indicate the verification page is shown
    page_markers: tuple[str, ...] = (
        "verification code",
        "verify your email",
        "check your email",
    )


@dataclass(frozen=True)
class SubmitSelectors:
    final_submit: str = (
        "button[type='submit'], input[type='submit'], .submit-button, .reserve-button"
    )


@dataclass(frozen=True)
class PortalDOMSchema:
    """Top-level container grouping all selector categories."""

    SPORT: SportSelectors = SportSelectors()
    TIME_SLOT: TimeSlotSelectors = TimeSlotSelectors()
    CONTACT: ContactSelectors = ContactSelectors()
    VERIFICATION: VerificationSelectors = VerificationSelectors()
    SUBMIT: SubmitSelectors = SubmitSelectors()


# Single import point: `from app.providers.portal_dom_schema import DOM`
DOM = PortalDOMSchema()
