from parley.platform.slack import SlackAPIError, SlackWebClient, verify_slack_signature

__all__ = ["SlackAPIError", "SlackWebClient", "verify_slack_signature"]
