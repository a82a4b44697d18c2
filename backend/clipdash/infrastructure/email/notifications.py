from dataclasses import dataclass
from html import escape

from clipdash.core.config import settings
from clipdash.infrastructure.email.email_client import send_email
from clipdash.integrations.platform_adapters.base_adapter import provider_label

SUCCESS_COLOR = "#10b981"
FAILURE_COLOR = "#ef4444"
WARNING_COLOR = "#f59e0b"


@dataclass(frozen=True)
class PlatformResult:
    platform: str
    ok: bool
    error: str | None = None


def _app_link(path: str) -> str:
    return f"{settings.public_app_url.rstrip('/')}/{path}"


def _layout(*, heading: str, color: str, body_html: str, link_path: str, link_label: str) -> str:
    return (
        '<div style="font-family: -apple-system, BlinkMacSystemFont, \'Segoe UI\', Roboto, sans-serif; '
        'max-width: 480px; margin: 0 auto; padding: 32px 24px;">'
        f'<h2 style="color: {color}; margin: 0 0 16px;">{escape(heading)}</h2>'
        f"{body_html}"
        f'<a href="{_app_link(link_path)}" style="display: inline-block; background: #111; color: #fff; '
        'padding: 10px 24px; border-radius: 999px; text-decoration: none; font-size: 14px; font-weight: 500;">'
        f"{escape(link_label)}</a>"
        '<p style="color: #999; font-size: 12px; margin-top: 32px;">Sent from ClipDash</p>'
        "</div>"
    )


async def send_post_success_email(to_email: str, post_title: str, platforms: list[str]) -> None:
    platform_names = ", ".join(provider_label(platform) for platform in platforms)
    subject = "Your post is live!"
    plain_text = f'Your post "{post_title}" was successfully uploaded to {platform_names}.\n\n{_app_link("posted")}'
    html = _layout(
        heading=subject,
        color=SUCCESS_COLOR,
        body_html=(
            '<p style="color: #333; line-height: 1.6; margin: 0 0 16px;">'
            f"Your post <strong>\"{escape(post_title)}\"</strong> was successfully uploaded to "
            f"<strong>{escape(platform_names)}</strong>.</p>"
        ),
        link_path="posted",
        link_label="View on ClipDash",
    )
    await send_email(to_email, subject, plain_text, html)


async def send_post_failed_email(to_email: str, post_title: str, platform: str, error: str) -> None:
    label = provider_label(platform)
    subject = "Post upload failed"
    plain_text = f'Your post "{post_title}" failed to upload to {label}.\nError: {error}\n\n{_app_link("scheduled")}'
    html = _layout(
        heading=subject,
        color=FAILURE_COLOR,
        body_html=(
            '<p style="color: #333; line-height: 1.6; margin: 0 0 8px;">'
            f"Your post <strong>\"{escape(post_title)}\"</strong> failed to upload to "
            f"<strong>{escape(label)}</strong>.</p>"
            f'<p style="color: #666; line-height: 1.6; margin: 0 0 16px; font-size: 14px;">Error: {escape(error)}</p>'
        ),
        link_path="scheduled",
        link_label="Go to ClipDash to retry",
    )
    await send_email(to_email, subject, plain_text, html)


async def send_group_summary_email(to_email: str, post_title: str, results: list[PlatformResult]) -> None:
    any_failed = any(not result.ok for result in results)
    subject = "Post failed on some platforms" if any_failed else "Post summary: all platforms succeeded"
    link_path = "scheduled" if any_failed else "posted"

    plain_lines = [f'Results for "{post_title}":']
    rows = []
    for result in results:
        label = provider_label(result.platform)
        if result.ok:
            plain_lines.append(f"- {label}: ok")
            rows.append(
                '<tr><td style="padding:6px 12px;border-bottom:1px solid #eee;">'
                f'<span style="color:{SUCCESS_COLOR};">&#10004;</span> <strong>{escape(label)}</strong></td></tr>'
            )
        else:
            error = result.error or "Unknown error"
            plain_lines.append(f"- {label}: failed ({error})")
            rows.append(
                '<tr><td style="padding:6px 12px;border-bottom:1px solid #eee;">'
                f'<span style="color:{FAILURE_COLOR};">&#10008;</span> <strong>{escape(label)}</strong>'
                f" - {escape(error)}</td></tr>"
            )
    plain_lines.append("")
    plain_lines.append(_app_link(link_path))

    html = _layout(
        heading=subject,
        color=FAILURE_COLOR if any_failed else SUCCESS_COLOR,
        body_html=(
            '<p style="color: #333; line-height: 1.6; margin: 0 0 16px;">'
            f"Results for <strong>\"{escape(post_title)}\"</strong>:</p>"
            f'<table style="width:100%;border-collapse:collapse;margin-bottom:16px;">{"".join(rows)}</table>'
        ),
        link_path=link_path,
        link_label="View on ClipDash",
    )
    await send_email(to_email, subject, "\n".join(plain_lines), html)


async def send_reconnect_email(to_email: str, platform: str) -> None:
    label = provider_label(platform)
    subject = "Platform reconnection needed"
    plain_text = (
        f"Your {label} account needs to be reconnected. This may happen when your authorization expires.\n\n"
        f"{_app_link('settings')}"
    )
    html = _layout(
        heading=subject,
        color=WARNING_COLOR,
        body_html=(
            '<p style="color: #333; line-height: 1.6; margin: 0 0 16px;">'
            f"Your <strong>{escape(label)}</strong> account needs to be reconnected. "
            "This may happen when your authorization expires.</p>"
        ),
        link_path="settings",
        link_label="Go to ClipDash Settings to reconnect",
    )
    await send_email(to_email, subject, plain_text, html)
