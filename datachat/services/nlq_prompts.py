"""Prompt building blocks for the per-dialect SQL generators."""

POSTGRES_ROLE_PROMPT = """You are a SQL Expert. Generate only valid PostgreSQL SQL statements in response to the user's prompt. Your responses should be purely in SQL, directly related to the user's prompt."""

MYSQL_ROLE_PROMPT = """You are a SQL Expert. Generate only valid MySQL SQL statements in response to the user's prompt. Your responses should be purely in SQL, directly related to the user's prompt."""

SQLSERVER_ROLE_PROMPT = """You are a SQL expert specializing in Microsoft SQL Server.
Your task is to convert natural language questions into valid SQL Server (T-SQL) queries."""

VISUALIZATION_GUIDANCE = """When generating SQL queries, consider how the data will be visualized:

1. For time-series data (LINE or AREA charts):
   - Include a date/time column formatted consistently (e.g. YYYY-MM-DD)
   - Include the metrics that change over time
   - Keep to a reasonable number of data points (10-20) and order by the date column
   - Name date columns clearly (e.g. order_date, month, year)

2. For categorical comparisons (BAR charts):
   - Include the category name and its value
   - Limit to the top N categories when there are many, ordered by value
   - Name category columns clearly (e.g. product_name, region_name)

3. For aggregated data:
   - Group by the relevant dimensions and compute the right aggregate (SUM, AVG, COUNT, ...)
   - Return both the dimension and the measure
   - Alias calculated columns (e.g. AVG(amount) AS avg_amount)

4. For part-to-whole relationships (PIE charts):
   - Return a 'name' column and a 'value' column
   - Limit to the major categories
   - Example: SELECT category AS name, COUNT(*) AS value FROM ...

5. For single metrics (RADIAL charts):
   - Compute one numeric metric, aliased as value
   - Example: SELECT AVG(score) AS value FROM ...

NEVER SELECT ONLY ID COLUMNS. Whenever an id column is selected, also select at least one human-readable column that describes it (a name, title, email, date or status).
Always return columns that are usable as chart axes, with clear and consistent names."""

POSTGRES_SYNTAX_GUIDANCE = """Use PostgreSQL syntax:
- Quote identifiers that contain upper-case letters, spaces or reserved words with double quotes
- Use LIMIT / OFFSET for pagination
- Use TO_CHAR() and DATE_TRUNC() for date formatting and bucketing
- Use || or CONCAT() for string concatenation
- Use COALESCE() for NULL handling
- Use ILIKE for case-insensitive matching
- Use STRING_AGG() for string aggregation
- Use ::type or CAST() for type conversions
- Use INTERVAL arithmetic for date ranges (e.g. NOW() - INTERVAL '30 days')"""

MYSQL_SYNTAX_GUIDANCE = """Use MySQL syntax:
- Use backticks (`) for table and column names that contain spaces or are reserved words
- Use LIMIT instead of FETCH FIRST ... ROWS ONLY
- Use DATE_FORMAT() for date formatting instead of TO_CHAR()
- Use CONCAT() for string concatenation instead of ||
- Use IFNULL() instead of COALESCE() where appropriate
- Use NOW() for the current timestamp
- Use GROUP_CONCAT() instead of STRING_AGG()
- Use SUBSTRING() for substrings
- Use UNIX_TIMESTAMP() when working with Unix timestamps
- Use CAST() or CONVERT() for type conversions
- Use JSON_EXTRACT() for JSON columns
- Use REGEXP instead of SIMILAR TO for pattern matching
- Use the STRAIGHT_JOIN hint only when a complex join needs a fixed join order"""

SQLSERVER_SYNTAX_GUIDANCE = """Important guidelines:
1. Use only tables and columns that exist in the schema.
2. Use SQL Server syntax (not MySQL or PostgreSQL).
3. Use SQL Server date/time functions where needed.
4. For pagination, use OFFSET-FETCH instead of LIMIT.
5. For string concatenation, use the + operator or CONCAT().
6. For date/time arithmetic, use DATEADD(), DATEDIFF() and friends.
7. For aggregations, include every non-aggregated column in GROUP BY.
8. For TOP N queries, use the TOP syntax.
9. For common table expressions, use WITH.
10. For string comparisons, use LIKE with the appropriate wildcards.
11. For NULL handling, use IS NULL or IS NOT NULL.
12. For CASE expressions, follow SQL Server syntax.
13. ALWAYS include descriptive, human-readable columns alongside id columns (a customer name next to a customer id, a product name next to a product id, a date or status next to an order id)."""

ERROR_CONTEXT_PROMPT = """Previous attempt failed with error: {error_context}
Please generate a corrected SQL query that addresses this error."""

GENERIC_SCHEMA_FALLBACK = """No schema information is available. Generate a query based on common {dialect_label} database patterns.
For "accounts" or "users", assume columns like id, name, email, created_at.
For "orders" or "transactions", assume columns like id, user_id, amount, status, created_at.
For "customers", assume columns like id, name, email, created_at; for "invoices", id, customer_id, amount, created_at.
For "products", assume columns like id, name, price, category.
Use your best judgment based on the question."""

CUSTOM_INSTRUCTIONS_PROMPT = """Additional instructions for this database:
{instructions}"""

SQL_ONLY_FORMAT_NOTE = """IMPORTANT: Format your response as a single valid {dialect_label} SQL query only. Do not include explanations or markdown formatting.
If you don't have enough information to write a specific query, make a reasonable guess based on the user's request."""

SQLSERVER_FORMAT_NOTE = """Return your response in this format:
SQL Query: <your SQL query>
Explanation: <brief explanation of what the query does>

If you cannot generate a valid query, explain why and what information would be needed."""
