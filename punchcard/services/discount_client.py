"""
Commerce platform discount API client.

Creates and deletes the single-use, customer-restricted discount that lets
a customer claim an earned free item at checkout.
"""
import httpx
from datetime import datetime
from typing import Optional, Dict, Any, List

from ..extensions import db
from ..utils.exceptions import DiscountServiceError


class DiscountClient:
    """
    Client for the commerce platform Admin GraphQL API (discounts only).

    Can be initialized either with:
    - merchant_id (int): Will fetch credentials from database
    - shop_domain + access_token: Direct initialization
    """

    def __init__(self, merchant_id_or_domain, access_token: str = None,
                 api_version: str = '2026-01', timeout: float = 30.0):
        if isinstance(merchant_id_or_domain, int):
            from ..models.merchant import Merchant
            merchant = db.session.get(Merchant, merchant_id_or_domain)
            if not merchant:
                raise ValueError(f"Merchant {merchant_id_or_domain} not found")
            if not merchant.has_commerce_credentials:
                raise ValueError(f"Merchant {merchant_id_or_domain} missing commerce credentials")

            self.shop_domain = merchant.commerce_domain
            self.access_token = merchant.access_token
        else:
            self.shop_domain = merchant_id_or_domain
            self.access_token = access_token

        self.shop_domain = self.shop_domain.replace('https://', '').replace('http://', '').rstrip('/')
        self.api_version = api_version
        self.timeout = timeout
        self.graphql_url = f'https://{self.shop_domain}/admin/api/{api_version}/graphql.json'

    def _execute_query(self, query: str, variables: Optional[Dict] = None) -> Dict[str, Any]:
        """Execute a GraphQL query, raising DiscountServiceError on any failure."""
        headers = {
            'X-Shopify-Access-Token': self.access_token,
            'Content-Type': 'application/json'
        }

        payload = {'query': query}
        if variables:
            payload['variables'] = variables

        try:
            with httpx.Client() as client:
                response = client.post(
                    self.graphql_url,
                    headers=headers,
                    json=payload,
                    timeout=self.timeout
                )
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPError as e:
            raise DiscountServiceError(f"Discount API request failed: {e}", e) from e

        if 'errors' in result:
            raise DiscountServiceError(f"GraphQL errors: {result['errors']}")

        return result.get('data', {})

    @staticmethod
    def _raise_user_errors(payload: Dict[str, Any], operation: str) -> None:
        errors = payload.get('userErrors') or []
        if errors:
            messages = '; '.join(e.get('message', str(e)) for e in errors)
            raise DiscountServiceError(f"{operation} rejected: {messages}")

    def create_reward_discount(
        self,
        reward_id: int,
        customer_id: str,
        variation_ids: List[str],
        title: str
    ) -> str:
        """
        Create a 100%-off, one-use discount on one qualifying item.

        Args:
            reward_id: Local reward id (used in the discount code)
            customer_id: Customer allowed to use it
            variation_ids: Variations the free item may be chosen from
            title: Merchant-facing discount title

        Returns:
            Discount node id
        """
        if not customer_id.startswith('gid://'):
            customer_id = f'gid://shopify/Customer/{customer_id}'
        variation_gids = [
            v if v.startswith('gid://') else f'gid://shopify/ProductVariant/{v}'
            for v in variation_ids
        ]

        mutation = """
        mutation createRewardDiscount($discount: DiscountCodeBasicInput!) {
            discountCodeBasicCreate(basicCodeDiscount: $discount) {
                codeDiscountNode {
                    id
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        variables = {
            'discount': {
                'title': title,
                'code': f'LOYALTY-{reward_id}',
                'startsAt': datetime.utcnow().isoformat() + 'Z',
                'usageLimit': 1,
                'appliesOncePerCustomer': True,
                'customerSelection': {'customers': {'add': [customer_id]}},
                'customerGets': {
                    'value': {
                        'discountOnQuantity': {
                            'quantity': '1',
                            'effect': {'percentage': 1.0}
                        }
                    },
                    'items': {'products': {'productVariantsToAdd': variation_gids}}
                }
            }
        }

        result = self._execute_query(mutation, variables)
        payload = result.get('discountCodeBasicCreate') or {}
        self._raise_user_errors(payload, 'discountCodeBasicCreate')

        node = payload.get('codeDiscountNode') or {}
        if not node.get('id'):
            raise DiscountServiceError('discountCodeBasicCreate returned no discount id')
        return node['id']

    def delete_discount(self, discount_id: str) -> bool:
        """Delete a reward discount. Returns True once it no longer exists."""
        mutation = """
        mutation deleteRewardDiscount($id: ID!) {
            discountCodeDelete(id: $id) {
                deletedCodeDiscountId
                userErrors {
                    field
                    message
                }
            }
        }
        """
        result = self._execute_query(mutation, {'id': discount_id})
        payload = result.get('discountCodeDelete') or {}

        errors = payload.get('userErrors') or []
        if any('does not exist' in (e.get('message') or '').lower() for e in errors):
            return True
        self._raise_user_errors(payload, 'discountCodeDelete')
        return True
