# File: config_flow.py
"""Config flow for the Family Stars integration.

One config entry per (device, family): the user step asks for the family id
and the Supabase project credentials, and checks the API before creating the
entry. The options flow tunes the expiration sweep and realtime updates.
"""

from __future__ import annotations

from typing import Any

import voluptuous as vol
from homeassistant import config_entries
from homeassistant.core import callback
from homeassistant.helpers import config_validation as cv
from yarl import URL

from . import const
from .remote import RemoteError, SupabaseRemoteService


class FamilyStarsConfigFlow(config_entries.ConfigFlow, domain=const.DOMAIN):
    """Config flow for Family Stars."""

    VERSION = 1

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> config_entries.ConfigFlowResult:
        """Ask for the family and remote store credentials."""
        errors: dict[str, str] = {}

        if user_input is not None:
            family_id = user_input[const.CONF_FAMILY_ID].strip()
            remote_url = user_input[const.CONF_REMOTE_URL].strip().rstrip("/")

            await self.async_set_unique_id(family_id)
            self._abort_if_unique_id_configured()

            if URL(remote_url).scheme not in ("http", "https"):
                errors[const.CONF_REMOTE_URL] = const.CFOP_ERROR_INVALID_URL
            else:
                remote = SupabaseRemoteService(
                    self.hass, remote_url, user_input[const.CONF_API_KEY]
                )
                try:
                    await remote.async_validate(family_id)
                except RemoteError as err:
                    const.LOGGER.warning(
                        "WARNING: Config flow: remote validation failed (%s): %s",
                        err.code,
                        err,
                    )
                    errors["base"] = (
                        const.CFOP_ERROR_INVALID_AUTH
                        if err.code == const.REMOTE_ERROR_AUTH
                        else const.CFOP_ERROR_CANNOT_CONNECT
                    )

            if not errors:
                return self.async_create_entry(
                    title=f"{const.FAMILY_STARS_TITLE} ({family_id})",
                    data={
                        const.CONF_FAMILY_ID: family_id,
                        const.CONF_REMOTE_URL: remote_url,
                        const.CONF_API_KEY: user_input[const.CONF_API_KEY],
                    },
                    options={
                        const.CONF_SWEEP_INTERVAL: const.DEFAULT_SWEEP_INTERVAL,
                        const.CONF_REALTIME_ENABLED: const.DEFAULT_REALTIME_ENABLED,
                    },
                )

        schema = vol.Schema(
            {
                vol.Required(const.CONF_FAMILY_ID): cv.string,
                vol.Required(const.CONF_REMOTE_URL): cv.string,
                vol.Required(const.CONF_API_KEY): cv.string,
            }
        )
        return self.async_show_form(
            step_id="user",
            data_schema=self.add_suggested_values_to_schema(schema, user_input),
            errors=errors,
        )

    @staticmethod
    @callback
    def async_get_options_flow(
        config_entry: config_entries.ConfigEntry,
    ) -> config_entries.OptionsFlow:
        """Return the Options Flow."""
        return FamilyStarsOptionsFlowHandler()


class FamilyStarsOptionsFlowHandler(config_entries.OptionsFlow):
    """Options flow: sweep interval and realtime updates."""

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> config_entries.ConfigFlowResult:
        """Manage the options."""
        if user_input is not None:
            return self.async_create_entry(data=user_input)

        options = self.config_entry.options
        schema = vol.Schema(
            {
                vol.Required(
                    const.CONF_SWEEP_INTERVAL,
                    default=options.get(
                        const.CONF_SWEEP_INTERVAL, const.DEFAULT_SWEEP_INTERVAL
                    ),
                ): vol.All(
                    vol.Coerce(int),
                    vol.Range(
                        min=const.MIN_SWEEP_INTERVAL, max=const.MAX_SWEEP_INTERVAL
                    ),
                ),
                vol.Required(
                    const.CONF_REALTIME_ENABLED,
                    default=options.get(
                        const.CONF_REALTIME_ENABLED, const.DEFAULT_REALTIME_ENABLED
                    ),
                ): cv.boolean,
            }
        )
        return self.async_show_form(step_id="init", data_schema=schema)
