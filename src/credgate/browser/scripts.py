"""JavaScript snippets evaluated inside the embedded browser.

Scripts are read-only: they inspect ``window.location`` and
``localStorage`` and return a plain object. Each is a single arrow
function expression so that Playwright's ``page.evaluate`` calls it and
serialises the returned value.
"""

SUPABASE_EXTRACTION_SCRIPT = r"""
() => {
  try {
    const host = window.location.hostname;
    if (host !== "supabase.com" && !host.endsWith(".supabase.com")) {
      return { success: false, error: "Not on Supabase domain" };
    }
    const match = window.location.href.match(
      /supabase\.com\/dashboard\/project\/([a-zA-Z0-9_-]+)/
    );
    const context = match ? match[1] : null;

    for (let i = 0; i < window.localStorage.length; i++) {
      const key = window.localStorage.key(i);
      if (!key || !/auth[.-]token/.test(key)) {
        continue;
      }
      let entry;
      try {
        entry = JSON.parse(window.localStorage.getItem(key));
      } catch (e) {
        continue;
      }
      const session = entry && (entry.currentSession || entry);
      if (session && typeof session.access_token === "string" && session.access_token) {
        return { success: true, token: session.access_token, context: context };
      }
    }
    return { success: false, context: context, error: "No auth token in localStorage" };
  } catch (error) {
    return { success: false, error: String(error && error.message ? error.message : error) };
  }
}
"""
